import asyncio
from unittest.mock import AsyncMock

import pytest

from core.aggregator import BalanceAggregator
from core.errors import SourceUnavailable
from core.models import Balance, ConnectedWalletSet, Ecosystem, TokenMetadata, WalletHandle

EVM = WalletHandle(address="0x742d35Cc6634C0532925a3b844Bc454e4438f44e", type=Ecosystem.EVM)
SOL = WalletHandle(address="9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM", type=Ecosystem.SOLANA)
BTC = WalletHandle(address="bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh", type=Ecosystem.BITCOIN)


class StubFetcher:
    def __init__(self, rows=None, error=None, delay=0.0):
        self.rows = rows or []
        self.error = error
        self.delay = delay
        self.calls = []

    async def fetch(self, wallet, tokens):
        self.calls.append((wallet, tokens))
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.rows)


def row(token, amount, wallet):
    return Balance(token=token, amount=amount, wallet=wallet.display)


@pytest.mark.asyncio
async def test_rows_come_back_in_ecosystem_order():
    # bitcoin answers first, evm last
    fetchers = {
        Ecosystem.EVM: StubFetcher([row("ETH", "1.0000", EVM), row("USDT", "0.0000", EVM)], delay=0.03),
        Ecosystem.SOLANA: StubFetcher([row("SOL", "2.5000", SOL)], delay=0.02),
        Ecosystem.BITCOIN: StubFetcher([row("BTC", "0.00100000", BTC)], delay=0.0),
    }
    agg = BalanceAggregator(fetchers)
    balances = await agg.fetch_wallet_balances(ConnectedWalletSet(evm=EVM, solana=SOL, bitcoin=BTC))
    assert [b.token for b in balances] == ["ETH", "USDT", "SOL", "BTC"]
    assert agg.summary == {"requests": 1, "fetched": 3, "substituted": 0}


@pytest.mark.asyncio
async def test_failed_strategy_becomes_one_zero_row():
    fetchers = {
        Ecosystem.EVM: StubFetcher(error=SourceUnavailable("rpc down")),
        Ecosystem.SOLANA: StubFetcher([row("SOL", "2.5000", SOL), row("BONK", "0.0000", SOL)]),
    }
    agg = BalanceAggregator(fetchers)
    balances = await agg.fetch_wallet_balances(ConnectedWalletSet(evm=EVM, solana=SOL))
    assert balances == [
        Balance(token="ETH", amount="0.0000", wallet="evm:0x742d...f44e"),
        row("SOL", "2.5000", SOL),
        row("BONK", "0.0000", SOL),
    ]
    assert agg.summary["substituted"] == 1


@pytest.mark.asyncio
async def test_missing_fetcher_is_substituted():
    agg = BalanceAggregator({})
    balances = await agg.fetch_wallet_balances(ConnectedWalletSet(bitcoin=BTC))
    assert balances == [Balance(token="BTC", amount="0.00000000", wallet=BTC.display)]


@pytest.mark.asyncio
async def test_empty_set_fetches_nothing():
    fetcher = StubFetcher([row("ETH", "1.0000", EVM)])
    agg = BalanceAggregator({Ecosystem.EVM: fetcher})
    assert await agg.fetch_wallet_balances(ConnectedWalletSet()) == []
    assert fetcher.calls == []


@pytest.mark.asyncio
async def test_tokens_are_shared_with_every_fetcher():
    tokens = {"1:0xdac1": TokenMetadata(address="0xdac1", chain_id=1, symbol="USDT", name="Tether", decimals=6)}
    token_cache = AsyncMock()
    token_cache.get_tokens.return_value = tokens
    evm, sol = StubFetcher([row("ETH", "0.0000", EVM)]), StubFetcher([row("SOL", "0.0000", SOL)])
    agg = BalanceAggregator({Ecosystem.EVM: evm, Ecosystem.SOLANA: sol}, token_cache=token_cache)
    await agg.fetch_wallet_balances(ConnectedWalletSet(evm=EVM, solana=SOL))
    assert evm.calls[0][1] is tokens
    assert sol.calls[0][1] is tokens
    token_cache.get_tokens.assert_awaited_once()


@pytest.mark.asyncio
async def test_broken_token_cache_degrades_to_no_tokens():
    token_cache = AsyncMock()
    token_cache.get_tokens.side_effect = RuntimeError("boom")
    evm = StubFetcher([row("ETH", "1.0000", EVM)])
    agg = BalanceAggregator({Ecosystem.EVM: evm}, token_cache=token_cache)
    balances = await agg.fetch_wallet_balances(ConnectedWalletSet(evm=EVM))
    assert balances == [row("ETH", "1.0000", EVM)]
    assert evm.calls[0][1] == {}


@pytest.mark.asyncio
async def test_cancellation_is_not_swallowed():
    agg = BalanceAggregator({Ecosystem.EVM: StubFetcher(error=asyncio.CancelledError())})
    with pytest.raises(asyncio.CancelledError):
        await agg.fetch_wallet_balances(ConnectedWalletSet(evm=EVM))
