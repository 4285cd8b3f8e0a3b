from __future__ import annotations

import time
from typing import Callable, Dict, List, Optional

import requests
from loguru import logger

from core.cache import TTLCache
from core.http import build_session
from core.models import (
    DISPLAY_PLACES,
    NATIVE_DECIMALS,
    NATIVE_SYMBOL,
    Balance,
    Ecosystem,
    TokenMetadata,
    WalletHandle,
    format_units,
    zero_amount,
)

# metadata rows shown next to the native balance
PLACEHOLDER_LIMIT = 5


class BalanceFetcher:
    """
    One ecosystem's balance strategy. fetch() serves from the strategy's own
    30s cache keyed by "ecosystem:address"; subclasses implement _fetch().
    """

    ecosystem: Ecosystem

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        cache_ttl: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.session = session or build_session()
        self.cache: TTLCache[str, List[Balance]] = TTLCache(cache_ttl, clock=clock)

    @property
    def native_symbol(self) -> str:
        return NATIVE_SYMBOL[self.ecosystem]

    def cache_key(self, wallet: WalletHandle) -> str:
        return f"{wallet.type.value}:{wallet.address}"

    async def fetch(self, wallet: WalletHandle, tokens: Dict[str, TokenMetadata]) -> List[Balance]:
        if wallet.type is not self.ecosystem:
            raise ValueError(f"{self.ecosystem.value} fetcher got a {wallet.type.value} wallet")

        async def load() -> List[Balance]:
            logger.info("Fetching balances for {} wallet: {}", self.ecosystem.value, wallet.display)
            return await self._fetch(wallet, tokens)

        return list(await self.cache.get_or_fetch(self.cache_key(wallet), load))

    async def _fetch(self, wallet: WalletHandle, tokens: Dict[str, TokenMetadata]) -> List[Balance]:
        raise NotImplementedError

    def native_balance(self, wallet: WalletHandle, base_units: int) -> Balance:
        amount = format_units(
            base_units, NATIVE_DECIMALS[self.ecosystem], DISPLAY_PLACES[self.ecosystem]
        )
        return Balance(token=self.native_symbol, amount=amount, wallet=wallet.display)

    def zero_balance(self, wallet: WalletHandle, token: Optional[str] = None) -> Balance:
        return Balance(
            token=token or self.native_symbol,
            amount=zero_amount(self.ecosystem),
            wallet=wallet.display,
        )

    def placeholders(self, wallet: WalletHandle, tokens: List[TokenMetadata]) -> List[Balance]:
        """Zero rows for listed tokens; decoration only, no token balance reads."""
        out = []
        for token in tokens:
            if not token.symbol or token.symbol == self.native_symbol:
                continue
            out.append(self.zero_balance(wallet, token.symbol))
            if len(out) >= PLACEHOLDER_LIMIT:
                break
        return out


def rpc_result(payload: object) -> object:
    """Unwrap a JSON-RPC 2.0 response body or raise ValueError."""
    if not isinstance(payload, dict):
        raise ValueError("malformed JSON-RPC response")
    if payload.get("error"):
        raise ValueError(f"RPC error: {payload['error']}")
    if "result" not in payload:
        raise ValueError("JSON-RPC response has no result")
    return payload["result"]
