from unittest.mock import Mock

import pytest
import requests

from chains.base import PLACEHOLDER_LIMIT, rpc_result
from chains.bitcoin_api import BitcoinBalanceFetcher, btc_to_sats
from chains.evm_rpc import EvmBalanceFetcher
from chains.solana_rpc import SolanaBalanceFetcher
from conftest import make_response
from core.errors import SourceUnavailable
from core.models import Balance, Ecosystem, TokenMetadata, WalletHandle

EVM_WALLET = WalletHandle(address="0x742d35Cc6634C0532925a3b844Bc454e4438f44e", type=Ecosystem.EVM)
SOL_WALLET = WalletHandle(address="9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM", type=Ecosystem.SOLANA)
BTC_WALLET = WalletHandle(address="bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh", type=Ecosystem.BITCOIN)


def token(symbol, chain_id, address=None):
    return TokenMetadata(
        address=address or f"0x{symbol.lower()}", chain_id=chain_id, symbol=symbol, name=symbol, decimals=18
    )


def mainnet_tokens():
    symbols = ["ETH", "USDT", "USDC", "DAI", "WBTC", "LINK", "UNI"]
    out = {f"1:{s}": token(s, 1) for s in symbols}
    out["137:USDC"] = token("USDC", 137)
    return out


def sol_response(lamports):
    return make_response(200, {"jsonrpc": "2.0", "id": 1, "result": {"context": {"slot": 1}, "value": lamports}})


class TestSolanaFetcher:
    @pytest.mark.asyncio
    async def test_falls_through_to_working_endpoint(self, clock):
        session = Mock()
        session.post.side_effect = [
            requests.Timeout("read timed out"),
            requests.ConnectionError("refused"),
            sol_response(2_500_000_000),
        ]
        fetcher = SolanaBalanceFetcher(endpoints=["https://a", "https://b", "https://c"], session=session, clock=clock)
        balances = await fetcher.fetch(SOL_WALLET, {})
        assert balances == [Balance(token="SOL", amount="2.5000", wallet="solana:9WzDXw...AWWM")]
        assert [c.args[0] for c in session.post.call_args_list] == ["https://a", "https://b", "https://c"]

    @pytest.mark.asyncio
    async def test_all_endpoints_down_gives_zero_row(self, clock):
        session = Mock()
        session.post.side_effect = requests.ConnectionError("down")
        fetcher = SolanaBalanceFetcher(endpoints=["https://a", "https://b"], session=session, clock=clock)
        balances = await fetcher.fetch(SOL_WALLET, {})
        assert [(b.token, b.amount) for b in balances] == [("SOL", "0.0000")]

    @pytest.mark.asyncio
    async def test_rpc_error_payload_tries_next(self, clock):
        session = Mock()
        session.post.side_effect = [
            make_response(200, {"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "busy"}}),
            sol_response(1),
        ]
        fetcher = SolanaBalanceFetcher(endpoints=["https://a", "https://b"], session=session, clock=clock)
        assert (await fetcher.fetch(SOL_WALLET, {}))[0].amount == "0.0000"
        assert session.post.call_count == 2

    @pytest.mark.asyncio
    async def test_solana_placeholders(self, clock):
        session = Mock()
        session.post.return_value = sol_response(0)
        tokens = {"501:BONK": token("BONK", 501), "1151111081099710:JUP": token("JUP", 1151111081099710)}
        fetcher = SolanaBalanceFetcher(endpoints=["https://a"], session=session, clock=clock)
        balances = await fetcher.fetch(SOL_WALLET, tokens)
        assert [b.token for b in balances] == ["SOL", "BONK", "JUP"]


class TestEvmFetcher:
    @pytest.mark.asyncio
    async def test_one_eth_and_capped_placeholders(self, clock):
        session = Mock()
        session.post.return_value = make_response(200, {"jsonrpc": "2.0", "id": 1, "result": hex(10**18)})
        fetcher = EvmBalanceFetcher(rpc_url="https://rpc", session=session, clock=clock)
        balances = await fetcher.fetch(EVM_WALLET, mainnet_tokens())

        assert balances[0] == Balance(token="ETH", amount="1.0000", wallet="evm:0x742d...f44e")
        extra = balances[1:]
        assert len(extra) == PLACEHOLDER_LIMIT
        assert all(b.amount == "0.0000" for b in extra)
        assert "ETH" not in [b.token for b in extra]
        body = session.post.call_args.kwargs["json"]
        assert body["method"] == "eth_getBalance"
        assert body["params"] == [EVM_WALLET.address, "latest"]

    @pytest.mark.asyncio
    async def test_second_call_within_ttl_is_cached(self, clock):
        session = Mock()
        session.post.return_value = make_response(200, {"jsonrpc": "2.0", "id": 1, "result": "0x0"})
        fetcher = EvmBalanceFetcher(rpc_url="https://rpc", session=session, clock=clock)
        first = await fetcher.fetch(EVM_WALLET, {})
        second = await fetcher.fetch(EVM_WALLET, {})
        assert first == second
        assert session.post.call_count == 1
        clock.advance(30)
        await fetcher.fetch(EVM_WALLET, {})
        assert session.post.call_count == 2

    @pytest.mark.asyncio
    async def test_rpc_failure_raises_and_is_not_cached(self, clock):
        session = Mock()
        session.post.side_effect = requests.ConnectionError("refused")
        fetcher = EvmBalanceFetcher(rpc_url="https://rpc", session=session, clock=clock)
        with pytest.raises(SourceUnavailable):
            await fetcher.fetch(EVM_WALLET, {})
        with pytest.raises(SourceUnavailable):
            await fetcher.fetch(EVM_WALLET, {})
        assert session.post.call_count == 2

    @pytest.mark.asyncio
    async def test_wrong_wallet_type(self, clock):
        fetcher = EvmBalanceFetcher(rpc_url="https://rpc", session=Mock(), clock=clock)
        with pytest.raises(ValueError):
            await fetcher.fetch(SOL_WALLET, {})


class TestBitcoinFetcher:
    @pytest.mark.asyncio
    async def test_proxy_balance_plus_lightning_row(self, clock):
        session = Mock()
        session.get.return_value = make_response(200, {"balance": "0.12345678"})
        fetcher = BitcoinBalanceFetcher(proxy_url="http://proxy/api/bitcoin/", session=session, clock=clock)
        balances = await fetcher.fetch(BTC_WALLET, {})
        assert [(b.token, b.amount) for b in balances] == [
            ("BTC", "0.12345678"),
            ("BTC (Lightning)", "0.00000000"),
        ]
        assert session.get.call_args.args[0] == "http://proxy/api/bitcoin/balance"
        assert session.get.call_args.kwargs["params"] == {"address": BTC_WALLET.address}

    @pytest.mark.asyncio
    async def test_proxy_error_gives_zero(self, clock):
        session = Mock()
        session.get.return_value = make_response(
            503, {"error": "Failed to fetch Bitcoin balance", "balance": "0.00000000"}, reason="Service Unavailable"
        )
        fetcher = BitcoinBalanceFetcher(proxy_url="http://proxy", session=session, clock=clock)
        balances = await fetcher.fetch(BTC_WALLET, {})
        assert balances[0] == Balance(token="BTC", amount="0.00000000", wallet=BTC_WALLET.display)

    def test_btc_to_sats(self):
        assert btc_to_sats("0.00000001") == 1
        assert btc_to_sats("21.5") == 2_150_000_000
        with pytest.raises(ValueError):
            btc_to_sats("0.000000001")
        with pytest.raises(ValueError):
            btc_to_sats("lots")


def test_rpc_result_unwraps():
    assert rpc_result({"jsonrpc": "2.0", "result": "0x1"}) == "0x1"
    with pytest.raises(ValueError):
        rpc_result({"jsonrpc": "2.0", "error": {"code": -32000}})
    with pytest.raises(ValueError):
        rpc_result(None)
