import pytest

from core.models import (
    ConnectedWalletSet,
    Ecosystem,
    TokenMetadata,
    WalletHandle,
    format_units,
    zero_amount,
)


class TestFormatting:
    def test_lamports_to_sol(self):
        assert format_units(2_500_000_000, 9, 4) == "2.5000"

    def test_wei_to_eth_rounds_to_four_places(self):
        assert format_units(10**18, 18, 4) == "1.0000"
        assert format_units(123_456_789_000_000_000, 18, 4) == "0.1235"

    def test_satoshis_keep_eight_places(self):
        assert format_units(12_345_678, 8, 8) == "0.12345678"
        assert format_units(1, 8, 8) == "0.00000001"

    def test_zero_amounts_per_chain(self):
        assert zero_amount(Ecosystem.EVM) == "0.0000"
        assert zero_amount(Ecosystem.SOLANA) == "0.0000"
        assert zero_amount(Ecosystem.BITCOIN) == "0.00000000"

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            format_units(-1, 8, 8)


class TestWalletSet:
    def test_handle_display_tag(self):
        h = WalletHandle(address="0xABC0000000000000000000000000000000001234", type="evm")
        assert h.type is Ecosystem.EVM
        assert h.display == "evm:0xABC0...1234"

    def test_handle_requires_address(self):
        with pytest.raises(ValueError):
            WalletHandle(address="", type=Ecosystem.SOLANA)

    def test_slot_must_match_type(self):
        with pytest.raises(ValueError):
            ConnectedWalletSet(evm=WalletHandle(address="abc", type=Ecosystem.SOLANA))

    def test_with_slot_replaces_without_mutating(self):
        empty = ConnectedWalletSet()
        one = empty.with_slot(Ecosystem.BITCOIN, WalletHandle(address="bc1q", type=Ecosystem.BITCOIN))
        assert empty.bitcoin is None
        assert one.bitcoin.address == "bc1q"
        assert one.with_slot(Ecosystem.BITCOIN, None) == empty

    def test_connected_is_ordered(self):
        wallets = ConnectedWalletSet(
            bitcoin=WalletHandle(address="bc1q", type=Ecosystem.BITCOIN),
            evm=WalletHandle(address="0x1", type=Ecosystem.EVM),
        )
        assert [h.type for h in wallets.connected()] == [Ecosystem.EVM, Ecosystem.BITCOIN]
        assert wallets.to_dict()["solana"] is None


def test_token_metadata_from_api():
    t = TokenMetadata.from_api(
        {"address": "0xdac1", "chainId": 1, "symbol": "USDT", "name": "Tether", "decimals": 6, "priceUSD": "1.0"}
    )
    assert t.chain_id == 1
    assert t.price_usd == 1.0
    assert t.logo_uri is None
