import asyncio

import pytest

from core.errors import ConnectTimeout, ProviderNotInstalled, RedirectingToWallet, UserRejected
from core.models import Ecosystem, WalletHandle
from wallets.adapters import BitcoinAdapter, EvmAdapter, SolanaAdapter
from wallets.mock import MockEthereumProvider, MockPhantomProvider, MockSatsProvider
from wallets.providers import ProviderRpcError, WalletEnvironment


class HangingProvider:
    async def request(self, method, params=None):
        await asyncio.Event().wait()


class BrokenSats:
    def __init__(self, error, installed=None):
        self.error = error
        if installed is not None:
            async def get_installed_wallets():
                return installed
            self.get_installed_wallets = get_installed_wallets

    async def request(self, method, params=None):
        raise self.error

    async def disconnect(self):
        raise RuntimeError("bridge gone")


class TestEvmAdapter:
    @pytest.mark.asyncio
    async def test_connect_returns_first_account(self):
        adapter = EvmAdapter(WalletEnvironment(ethereum=MockEthereumProvider(address="0xA")))
        handle = await adapter.connect()
        assert handle == WalletHandle(address="0xA", type=Ecosystem.EVM)

    @pytest.mark.asyncio
    async def test_missing_provider(self):
        adapter = EvmAdapter(WalletEnvironment())
        assert not await adapter.is_installed()
        with pytest.raises(ProviderNotInstalled):
            await adapter.connect()

    @pytest.mark.asyncio
    async def test_rejection_maps_to_user_rejected(self):
        eth = MockEthereumProvider()
        eth.reject_next = True
        with pytest.raises(UserRejected) as exc:
            await EvmAdapter(WalletEnvironment(ethereum=eth)).connect()
        assert exc.value.ecosystem == "evm"

    @pytest.mark.asyncio
    async def test_prompt_times_out(self):
        adapter = EvmAdapter(WalletEnvironment(ethereum=HangingProvider()), connect_timeout=0.05)
        with pytest.raises(ConnectTimeout):
            await adapter.connect()

    @pytest.mark.asyncio
    async def test_still_connected_is_case_insensitive(self):
        eth = MockEthereumProvider(address="0xAbCd", authorized=True)
        adapter = EvmAdapter(WalletEnvironment(ethereum=eth))
        assert await adapter.check_still_connected(WalletHandle(address="0xabcd", type=Ecosystem.EVM))
        eth.switch_account(None)
        assert not await adapter.check_still_connected(WalletHandle(address="0xabcd", type=Ecosystem.EVM))


class TestSolanaAdapter:
    @pytest.mark.asyncio
    async def test_connect(self):
        phantom = MockPhantomProvider(address="SoL1")
        handle = await SolanaAdapter(WalletEnvironment(solana=phantom)).connect()
        assert handle.address == "SoL1"
        assert phantom.is_connected

    @pytest.mark.asyncio
    async def test_mobile_without_provider_redirects(self):
        opened = []
        env = WalletEnvironment(
            user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)",
            app_url="https://dash.example.com/wallets",
            open_url=opened.append,
        )
        adapter = SolanaAdapter(env)
        assert await adapter.is_installed()
        with pytest.raises(RedirectingToWallet) as exc:
            await adapter.connect()
        assert opened == [exc.value.url]
        assert exc.value.url.startswith("https://phantom.app/ul/browse/")

    @pytest.mark.asyncio
    async def test_desktop_without_provider_is_not_installed(self):
        adapter = SolanaAdapter(WalletEnvironment(user_agent="Mozilla/5.0 (X11; Linux x86_64)"))
        assert not await adapter.is_installed()
        with pytest.raises(ProviderNotInstalled):
            await adapter.connect()

    @pytest.mark.asyncio
    async def test_silent_connect_needs_trust(self):
        adapter = SolanaAdapter(WalletEnvironment(solana=MockPhantomProvider(trusted=False)))
        with pytest.raises(ProviderRpcError):
            await adapter.silent_connect()

    @pytest.mark.asyncio
    async def test_still_connected_detects_other_key(self):
        phantom = MockPhantomProvider(address="SoL1")
        adapter = SolanaAdapter(WalletEnvironment(solana=phantom))
        await adapter.connect()
        assert await adapter.check_still_connected(WalletHandle(address="SoL1", type=Ecosystem.SOLANA))
        phantom.switch_account("SoL2")
        assert not await adapter.check_still_connected(WalletHandle(address="SoL1", type=Ecosystem.SOLANA))


class TestBitcoinAdapter:
    @pytest.mark.asyncio
    async def test_installed_when_wallet_answers(self):
        adapter = BitcoinAdapter(WalletEnvironment(bitcoin=MockSatsProvider(connected=False)))
        assert await adapter.is_installed()

    @pytest.mark.asyncio
    async def test_locked_wallet_counts_as_installed(self):
        sats = MockSatsProvider()
        sats.locked = True
        assert await BitcoinAdapter(WalletEnvironment(bitcoin=sats)).is_installed()

    @pytest.mark.asyncio
    async def test_unknown_error_falls_back_to_installed_wallet_list(self):
        env = WalletEnvironment(bitcoin=BrokenSats(RuntimeError("boom"), installed=["xverse"]))
        assert await BitcoinAdapter(env).is_installed()
        env = WalletEnvironment(bitcoin=BrokenSats(RuntimeError("boom")))
        assert not await BitcoinAdapter(env).is_installed()

    @pytest.mark.asyncio
    async def test_connect_prompts_then_reuses_connection(self):
        sats = MockSatsProvider(address="bc1qxyz")
        adapter = BitcoinAdapter(WalletEnvironment(bitcoin=sats))
        assert (await adapter.connect()).address == "bc1qxyz"
        assert sats.connected
        # second call finds the existing account without a prompt
        sats.reject_next = True
        assert (await adapter.connect()).address == "bc1qxyz"

    @pytest.mark.asyncio
    async def test_rejected_prompt(self):
        sats = MockSatsProvider()
        sats.reject_next = True
        with pytest.raises(UserRejected):
            await BitcoinAdapter(WalletEnvironment(bitcoin=sats)).connect()

    @pytest.mark.asyncio
    async def test_disconnect_swallows_provider_errors(self):
        adapter = BitcoinAdapter(WalletEnvironment(bitcoin=BrokenSats(RuntimeError("boom"))))
        await adapter.disconnect()

    @pytest.mark.asyncio
    async def test_still_connected_compares_payment_address(self):
        sats = MockSatsProvider(address="bc1qxyz", connected=True)
        adapter = BitcoinAdapter(WalletEnvironment(bitcoin=sats))
        assert await adapter.check_still_connected(WalletHandle(address="bc1qxyz", type=Ecosystem.BITCOIN))
        assert not await adapter.check_still_connected(WalletHandle(address="bc1qother", type=Ecosystem.BITCOIN))
