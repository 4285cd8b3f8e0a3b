from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional, Set

from loguru import logger

from core.models import (
    ECOSYSTEMS,
    AccountChanged,
    Connected,
    Disconnected,
    Ecosystem,
    WalletEvent,
    short_address,
)
from core.notifier import Notifier
from wallets.adapters import BitcoinAdapter, EvmAdapter, SolanaAdapter, WalletAdapter

Subscriber = Callable[[WalletEvent], None]

UNWATCHED = "unwatched"
WATCHING = "watching"


class WalletObserver:
    """
    Process-wide authority for the active address per ecosystem.

    Provider signals (EVM accountsChanged, Phantom connect/disconnect/accountChanged,
    Bitcoin polling) all funnel into update_address(), which classifies the
    transition and emits one WalletEvent to every subscriber.

    Watching starts with the first subscriber and stops with the last one.
    Emission is synchronous: when update_address() returns, every subscriber
    has seen the event.
    """

    def __init__(
        self,
        adapters: Dict[Ecosystem, WalletAdapter],
        notifier: Optional[Notifier] = None,
        bitcoin_poll_interval: float = 10.0,
        bitcoin_reconnect_delay: float = 1.0,
        query_timeout: float = 10.0,
    ):
        self.adapters = adapters
        self.notifier = notifier or Notifier()
        self.bitcoin_poll_interval = float(bitcoin_poll_interval)
        self.bitcoin_reconnect_delay = float(bitcoin_reconnect_delay)
        self.query_timeout = float(query_timeout)

        self._subscribers: List[Subscriber] = []
        self._addresses: Dict[Ecosystem, Optional[str]] = {eco: None for eco in ECOSYSTEMS}
        # bumped on every update_address(); lets slow start-up queries detect newer signals
        self._seq: Dict[Ecosystem, int] = {eco: 0 for eco in ECOSYSTEMS}
        self._watched: Set[Ecosystem] = set()
        self._watching = False
        self._detach: List[Callable[[], None]] = []
        self._startup: Set[asyncio.Task] = set()
        self._poll_task: Optional[asyncio.Task] = None

    # ---- subscription / lifecycle ----

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)
        if len(self._subscribers) == 1 and not self._watching:
            self.start()

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
            if not self._subscribers and self._watching:
                self.stop()

        return unsubscribe

    @property
    def watching(self) -> bool:
        return self._watching

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def state(self, ecosystem: Ecosystem) -> str:
        return WATCHING if Ecosystem(ecosystem) in self._watched else UNWATCHED

    def addresses(self) -> Dict[Ecosystem, Optional[str]]:
        return dict(self._addresses)

    def start(self) -> None:
        """Attach provider listeners and begin polling. Needs a running event loop."""
        if self._watching:
            return
        logger.info("Starting wallet observers")
        self._watching = True
        self._watch_evm()
        self._watch_solana()
        self._watch_bitcoin()

    def stop(self) -> None:
        if not self._watching:
            return
        logger.info("Stopping wallet observers")
        self._watching = False
        self._watched.clear()
        for detach in self._detach:
            try:
                detach()
            except Exception as e:
                logger.error("Error removing wallet listener: {}", e)
        self._detach.clear()
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        for task in list(self._startup):
            task.cancel()

    async def wait_idle(self) -> None:
        """Wait for the start-up queries (initial accounts, auto-reconnects) to finish."""
        while self._startup:
            await asyncio.gather(*list(self._startup), return_exceptions=True)

    async def shutdown(self) -> None:
        poll = self._poll_task
        pending = list(self._startup)
        self.stop()
        tasks = pending + ([poll] if poll is not None else [])
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ---- classification ----

    def update_address(self, ecosystem: Ecosystem, address: Optional[str]) -> None:
        ecosystem = Ecosystem(ecosystem)
        address = address or None
        self._seq[ecosystem] += 1
        old = self._addresses[ecosystem]
        self._addresses[ecosystem] = address

        if old is None and address is not None:
            self._emit(Connected(ecosystem=ecosystem, address=address))
        elif old is not None and address is None:
            self._emit(Disconnected(ecosystem=ecosystem))
        elif old is not None and address is not None and old != address:
            self._emit(AccountChanged(ecosystem=ecosystem, address=address))
            self.notifier.success(f"{ecosystem.value.upper()} wallet account changed")

    def _emit(self, event: WalletEvent) -> None:
        logger.debug("wallet event: {}", event)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("wallet event subscriber failed")

    # ---- per-ecosystem watchers ----

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._startup.add(task)
        task.add_done_callback(self._startup.discard)

    def _watch_evm(self) -> None:
        adapter = self.adapters.get(Ecosystem.EVM)
        provider = adapter.provider if adapter else None
        if provider is None:
            logger.debug("No EVM provider, not watching")
            return

        def on_accounts_changed(accounts) -> None:
            accounts = [a for a in (accounts or []) if isinstance(a, str) and a]
            self.update_address(Ecosystem.EVM, accounts[0] if accounts else None)

        try:
            provider.on("accountsChanged", on_accounts_changed)
        except Exception as e:
            logger.error("Error setting up EVM wallet listeners: {}", e)
            return
        self._detach.append(lambda: provider.remove_listener("accountsChanged", on_accounts_changed))
        self._watched.add(Ecosystem.EVM)
        self._spawn(self._evm_initial(adapter))

    def _apply_query(self, ecosystem: Ecosystem, seq: int, address: Optional[str]) -> bool:
        """Apply a query answer unless a newer signal arrived while it was in flight."""
        if self._seq[ecosystem] != seq:
            logger.debug("Dropping superseded {} account query", ecosystem.value)
            return False
        self.update_address(ecosystem, address)
        return True

    async def _evm_initial(self, adapter: EvmAdapter) -> None:
        seq = self._seq[Ecosystem.EVM]
        try:
            accounts = await asyncio.wait_for(adapter.accounts(), timeout=self.query_timeout)
        except Exception as e:
            logger.error("Error getting EVM accounts: {}", e)
            return
        if accounts:
            self._apply_query(Ecosystem.EVM, seq, accounts[0])

    def _watch_solana(self) -> None:
        adapter = self.adapters.get(Ecosystem.SOLANA)
        provider = adapter.provider if adapter else None
        if provider is None:
            logger.debug("No Solana provider, not watching")
            return

        def on_change(*_args) -> None:
            key = getattr(provider, "public_key", None)
            if key and getattr(provider, "is_connected", False):
                self.update_address(Ecosystem.SOLANA, str(key))
            else:
                self.update_address(Ecosystem.SOLANA, None)

        try:
            for event in ("connect", "disconnect", "accountChanged"):
                provider.on(event, on_change)
                self._detach.append(lambda event=event: provider.remove_listener(event, on_change))
        except Exception as e:
            logger.error("Error setting up Solana wallet listeners: {}", e)
            return
        self._watched.add(Ecosystem.SOLANA)

        key = getattr(provider, "public_key", None)
        if getattr(provider, "is_connected", False) and key:
            self.update_address(Ecosystem.SOLANA, str(key))
        else:
            self._spawn(self._solana_auto_reconnect(adapter))

    async def _solana_auto_reconnect(self, adapter: SolanaAdapter) -> None:
        seq = self._seq[Ecosystem.SOLANA]
        try:
            address = await adapter.silent_connect()
        except Exception as e:
            logger.info("Phantom auto-reconnect failed, user will need to connect manually: {}", e)
            return
        if not address:
            return
        # Phantom usually reports the same key through its "connect" event first
        if self._apply_query(Ecosystem.SOLANA, seq, address) or self._addresses[Ecosystem.SOLANA] == address:
            logger.info("Auto-reconnected to Phantom wallet {}", short_address(address))

    def _watch_bitcoin(self) -> None:
        adapter = self.adapters.get(Ecosystem.BITCOIN)
        if adapter is None or adapter.provider is None:
            logger.debug("No Bitcoin provider, not polling")
            return
        self._watched.add(Ecosystem.BITCOIN)
        self._poll_task = asyncio.get_running_loop().create_task(self._bitcoin_poll_loop())
        self._spawn(self._bitcoin_auto_reconnect(adapter))

    async def _bitcoin_auto_reconnect(self, adapter: BitcoinAdapter) -> None:
        # give the extension a moment to finish loading
        await asyncio.sleep(self.bitcoin_reconnect_delay)
        seq = self._seq[Ecosystem.BITCOIN]
        try:
            address = await asyncio.wait_for(adapter.get_account(), timeout=self.query_timeout)
        except Exception as e:
            logger.info("Xverse auto-reconnect failed, user will need to connect manually: {}", e)
            return
        if address and self._apply_query(Ecosystem.BITCOIN, seq, address):
            logger.info("Auto-reconnected to Xverse wallet {}", short_address(address))

    async def poll_bitcoin(self) -> None:
        """One polling round. Any failure reads as "wallet disconnected"."""
        adapter = self.adapters[Ecosystem.BITCOIN]
        seq = self._seq[Ecosystem.BITCOIN]
        try:
            address = await asyncio.wait_for(adapter.get_account(), timeout=self.query_timeout)
        except Exception as e:
            logger.debug("Bitcoin poll failed, treating wallet as disconnected: {}", e)
            address = None
        self._apply_query(Ecosystem.BITCOIN, seq, address)

    async def _bitcoin_poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.bitcoin_poll_interval)
            await self.poll_bitcoin()
