from __future__ import annotations

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Dict, List

import requests
from loguru import logger

from chains.base import BalanceFetcher
from core.errors import SourceUnavailable
from core.http import call_with_timeout
from core.models import NATIVE_DECIMALS, Balance, Ecosystem, TokenMetadata, WalletHandle

DEFAULT_BTC_PROXY_URL = "http://127.0.0.1:8000/api/bitcoin"

LIGHTNING_SYMBOL = "BTC (Lightning)"

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def btc_to_sats(balance: str) -> int:
    """Parse the proxy's 8dp decimal string back into satoshis."""
    try:
        value = Decimal(str(balance))
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"bad BTC amount: {balance!r}") from e
    sats = value * (Decimal(10) ** NATIVE_DECIMALS[Ecosystem.BITCOIN])
    if sats < 0 or sats != sats.to_integral_value():
        raise ValueError(f"bad BTC amount: {balance!r}")
    return int(sats)


class BitcoinBalanceFetcher(BalanceFetcher):
    """BTC through the same-origin proxy (bitcoin_proxy.py); zero on proxy failure."""

    ecosystem = Ecosystem.BITCOIN

    def __init__(self, proxy_url: str = DEFAULT_BTC_PROXY_URL, timeout: float = 10.0, **kwargs):
        super().__init__(**kwargs)
        self.proxy_url = proxy_url.rstrip("/")
        self.timeout = float(timeout)

    def _get_balance_sats(self, address: str) -> int:
        r = self.session.get(
            f"{self.proxy_url}/balance",
            params={"address": address},
            headers=NO_CACHE_HEADERS,
            timeout=self.timeout,
        )
        if not r.ok:
            raise SourceUnavailable(f"Failed to fetch Bitcoin balance: {r.status_code} {r.reason}")
        data = r.json()
        if not isinstance(data, dict) or "balance" not in data:
            raise ValueError("proxy response has no balance")
        return btc_to_sats(data["balance"])

    async def get_balance_sats(self, address: str) -> int:
        try:
            return await call_with_timeout(self._get_balance_sats, address, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise SourceUnavailable("Bitcoin proxy timed out") from e
        except (requests.RequestException, ValueError) as e:
            raise SourceUnavailable(f"Bitcoin proxy failed: {e}") from e

    async def _fetch(self, wallet: WalletHandle, tokens: Dict[str, TokenMetadata]) -> List[Balance]:
        try:
            sats = await self.get_balance_sats(wallet.address)
            btc = self.native_balance(wallet, sats)
        except SourceUnavailable as e:
            logger.error("Error fetching Bitcoin balance: {}", e)
            btc = self.zero_balance(wallet)
        return [btc, self.zero_balance(wallet, LIGHTNING_SYMBOL)]
