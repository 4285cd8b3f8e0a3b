from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, TypeVar

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

T = TypeVar("T")

USER_AGENT = "Multi-Chain-Wallet/1.0"


def build_session(
    retries: int = 0,
    backoff_factor: float = 0.5,
    status_forcelist: Iterable[int] = (500, 502, 503, 504),
    allowed_methods: Iterable[str] = ("GET", "POST"),
) -> requests.Session:
    """
    requests session with a urllib3 Retry adapter mounted on both schemes.
    retries=0 leaves retrying to the caller (endpoint fallback, 429 backoff).
    """
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=backoff_factor,
        status_forcelist=list(status_forcelist),
        allowed_methods=list(allowed_methods),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


async def call_with_timeout(fn: Callable[..., T], *args: Any, timeout: float, **kwargs: Any) -> T:
    """
    Run a blocking call off the event loop, bounded by `timeout` seconds.
    Raises asyncio.TimeoutError when the timer wins.
    """
    return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout=timeout)


def strip_query(url: str) -> str:
    # keeps API keys out of the logs
    return url.split("?", 1)[0]
