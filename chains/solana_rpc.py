from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Sequence

from loguru import logger

from chains.base import BalanceFetcher, rpc_result
from core.errors import AllEndpointsExhausted
from core.http import call_with_timeout, strip_query
from core.models import Balance, Ecosystem, TokenMetadata, WalletHandle

DEFAULT_SOLANA_RPC_ENDPOINTS = (
    "https://api.mainnet-beta.solana.com",
    "https://solana-mainnet.g.alchemy.com/v2/demo",
    "https://rpc.ankr.com/solana",
    "https://solana.public-rpc.com",
)

# chain ids the token list uses for Solana
SOLANA_CHAIN_IDS = {501, 1151111081099710}


class SolanaBalanceFetcher(BalanceFetcher):
    """
    SOL via getBalance, trying each endpoint in order with a per-attempt timeout.
    If every endpoint fails the wallet shows a zero SOL row instead of an error.
    """

    ecosystem = Ecosystem.SOLANA

    def __init__(
        self,
        endpoints: Sequence[str] = DEFAULT_SOLANA_RPC_ENDPOINTS,
        timeout: float = 3.0,
        **kwargs,
    ):
        super().__init__(**kwargs)
        if not endpoints:
            raise ValueError("at least one Solana RPC endpoint is required")
        self.endpoints = list(endpoints)
        self.timeout = float(timeout)

    def _get_balance_lamports(self, endpoint: str, address: str) -> int:
        r = self.session.post(
            endpoint,
            json={
                "jsonrpc": "2.0",
                "id": 1,
                "method": "getBalance",
                "params": [address, {"commitment": "confirmed"}],
            },
            timeout=self.timeout,
        )
        r.raise_for_status()
        result = rpc_result(r.json())
        value = result.get("value") if isinstance(result, dict) else result
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValueError(f"unexpected getBalance result: {result!r}")
        return value

    async def get_balance_lamports(self, address: str) -> int:
        last_error: Optional[BaseException] = None
        for endpoint in self.endpoints:
            logger.debug("Trying Solana endpoint: {}", strip_query(endpoint))
            try:
                lamports = await call_with_timeout(
                    self._get_balance_lamports, endpoint, address, timeout=self.timeout
                )
            except asyncio.TimeoutError as e:
                last_error = e
                logger.warning("Solana endpoint timed out: {}", strip_query(endpoint))
                continue
            except Exception as e:
                last_error = e
                logger.warning("Error with Solana endpoint {}: {}", strip_query(endpoint), e)
                continue
            logger.debug("Fetched SOL balance from {}", strip_query(endpoint))
            return lamports
        raise AllEndpointsExhausted(len(self.endpoints), last_error)

    async def _fetch(self, wallet: WalletHandle, tokens: Dict[str, TokenMetadata]) -> List[Balance]:
        try:
            lamports = await self.get_balance_lamports(wallet.address)
            balances = [self.native_balance(wallet, lamports)]
        except AllEndpointsExhausted as e:
            logger.error("All Solana endpoints failed: {}", e)
            balances = [self.zero_balance(wallet)]

        solana_tokens = [t for t in tokens.values() if t.chain_id in SOLANA_CHAIN_IDS]
        logger.debug("Found {} Solana tokens in the list", len(solana_tokens))
        balances.extend(self.placeholders(wallet, solana_tokens))
        return balances
