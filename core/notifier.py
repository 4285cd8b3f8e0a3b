from __future__ import annotations

import asyncio
from typing import Optional

import requests
from loguru import logger


class Notifier:
    """User-visible notifications. The base class only logs them."""

    def success(self, text: str) -> None:
        logger.info("notify: {}", text)

    def info(self, text: str) -> None:
        logger.info("notify: {}", text)

    def error(self, text: str) -> None:
        logger.warning("notify error: {}", text)


class TelegramNotifier(Notifier):
    """
    Also forwards notifications to a Telegram chat. Sends go through a queue
    drained at a fixed pace so callers on the event loop never block on HTTP.
    """

    def __init__(
        self,
        bot_token: str,
        chat_id: int,
        interval: float = 1.0,
        session: Optional[requests.Session] = None,
        maxsize: int = 500,
    ):
        self.bot_token = bot_token.strip()
        self.chat_id = int(chat_id)
        self.base = f"https://api.telegram.org/bot{self.bot_token}"
        self.session = session or requests.Session()
        self.interval = float(interval)
        self.queue: asyncio.Queue[tuple[str, bool]] = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None

    def send(self, text: str, silent: bool = False) -> None:
        r = self.session.post(
            f"{self.base}/sendMessage",
            json={
                "chat_id": self.chat_id,
                "text": text,
                "disable_notification": bool(silent),
                "disable_web_page_preview": True,
            },
            timeout=20,
        )
        r.raise_for_status()
        data = r.json()
        if not data.get("ok"):
            raise RuntimeError(data)

    def _enqueue(self, text: str, silent: bool) -> None:
        try:
            self.queue.put_nowait((text, silent))
        except asyncio.QueueFull:
            logger.warning("telegram queue full, dropping notification")

    def success(self, text: str) -> None:
        super().success(text)
        self._enqueue(f"✅ {text}", True)

    def info(self, text: str) -> None:
        super().info(text)
        self._enqueue(text, True)

    def error(self, text: str) -> None:
        super().error(text)
        self._enqueue(f"⚠️ {text}", False)

    async def sender_loop(self) -> None:
        while True:
            text, silent = await self.queue.get()
            try:
                await asyncio.to_thread(self.send, text, silent)
            except Exception as e:
                logger.warning("telegram send failed: {}", e)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self.sender_loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
