from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from loguru import logger

from chains.base import BalanceFetcher
from core.models import (
    NATIVE_SYMBOL,
    Balance,
    ConnectedWalletSet,
    Ecosystem,
    TokenMetadata,
    WalletHandle,
    zero_amount,
)
from enrich.token_list import TokenMetadataCache


class BalanceAggregator:
    """
    Balances for every connected wallet in one flat list, ordered EVM, Solana,
    Bitcoin. Fetches run concurrently and settle independently: a strategy
    that raises is replaced by one zero row for its native token.
    """

    def __init__(
        self,
        fetchers: Dict[Ecosystem, BalanceFetcher],
        token_cache: Optional[TokenMetadataCache] = None,
    ):
        self.fetchers = fetchers
        self.token_cache = token_cache

        self.summary = {
            "requests": 0,
            "fetched": 0,
            "substituted": 0,
        }

    async def _tokens(self) -> Dict[str, TokenMetadata]:
        if self.token_cache is None:
            return {}
        try:
            return await self.token_cache.get_tokens()
        except Exception as e:
            # get_tokens() already degrades; this only guards a broken cache
            logger.warning("Token metadata unavailable: {}", e)
            return {}

    async def _fetch_one(self, wallet: WalletHandle, tokens: Dict[str, TokenMetadata]) -> List[Balance]:
        fetcher = self.fetchers.get(wallet.type)
        if fetcher is None:
            raise LookupError(f"no balance fetcher for {wallet.type.value}")
        return await fetcher.fetch(wallet, tokens)

    @staticmethod
    def fallback(wallet: WalletHandle) -> Balance:
        return Balance(
            token=NATIVE_SYMBOL[wallet.type],
            amount=zero_amount(wallet.type),
            wallet=wallet.display,
        )

    async def fetch_wallet_balances(self, wallets: ConnectedWalletSet) -> List[Balance]:
        self.summary["requests"] += 1
        tokens = await self._tokens()

        connected = list(wallets.connected())
        if not connected:
            return []

        results = await asyncio.gather(
            *(self._fetch_one(w, tokens) for w in connected),
            return_exceptions=True,
        )

        out: List[Balance] = []
        for wallet, result in zip(connected, results):
            if isinstance(result, Exception):
                logger.error("Error fetching balances for {} wallet: {}", wallet.type.value, result)
                self.summary["substituted"] += 1
                out.append(self.fallback(wallet))
            elif isinstance(result, BaseException):
                raise result
            else:
                self.summary["fetched"] += 1
                out.extend(result)
        return out
