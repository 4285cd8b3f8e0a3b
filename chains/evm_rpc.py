from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

import requests
from loguru import logger

from chains.base import BalanceFetcher, rpc_result
from core.errors import SourceUnavailable
from core.http import call_with_timeout, strip_query
from core.models import Balance, Ecosystem, TokenMetadata, WalletHandle

ETHEREUM_MAINNET_CHAIN_ID = 1
DEFAULT_EVM_RPC_URL = "https://ethereum-rpc.publicnode.com"


class EvmBalanceFetcher(BalanceFetcher):
    """ETH via eth_getBalance, plus zero rows for chain-1 tokens from the token list."""

    ecosystem = Ecosystem.EVM

    def __init__(self, rpc_url: str = DEFAULT_EVM_RPC_URL, timeout: float = 5.0, **kwargs):
        super().__init__(**kwargs)
        self.rpc_url = rpc_url
        self.timeout = float(timeout)

    def _get_balance_wei(self, address: str) -> int:
        r = self.session.post(
            self.rpc_url,
            json={"jsonrpc": "2.0", "id": 1, "method": "eth_getBalance", "params": [address, "latest"]},
            timeout=self.timeout,
        )
        r.raise_for_status()
        result = rpc_result(r.json())
        if not isinstance(result, str):
            raise ValueError(f"unexpected eth_getBalance result: {result!r}")
        return int(result, 16)

    async def get_balance_wei(self, address: str) -> int:
        try:
            return await call_with_timeout(self._get_balance_wei, address, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise SourceUnavailable(f"EVM RPC timed out: {strip_query(self.rpc_url)}") from e
        except (requests.RequestException, ValueError) as e:
            raise SourceUnavailable(f"EVM RPC failed: {e}") from e

    async def _fetch(self, wallet: WalletHandle, tokens: Dict[str, TokenMetadata]) -> List[Balance]:
        wei = await self.get_balance_wei(wallet.address)
        balances = [self.native_balance(wallet, wei)]

        mainnet = self.tokens_for_chain(tokens, ETHEREUM_MAINNET_CHAIN_ID)
        logger.debug("Found {} Ethereum tokens in the list", len(mainnet))
        balances.extend(self.placeholders(wallet, mainnet))
        return balances

    @staticmethod
    def tokens_for_chain(tokens: Dict[str, TokenMetadata], chain_id: Optional[int]) -> List[TokenMetadata]:
        return [t for t in tokens.values() if t.chain_id == chain_id]
