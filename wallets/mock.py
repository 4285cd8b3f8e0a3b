"""
In-process stand-ins for MetaMask, Phantom and Xverse. Installed when
WALLET_MOCKS=1 so the dashboard runs without browser extensions, and used
by the test-suite to drive provider signals.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from wallets.providers import USER_REJECTED_CODE, EventEmitter, ProviderRpcError, WalletEnvironment

MOCK_EVM_ADDRESS = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"
MOCK_SOLANA_ADDRESS = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
MOCK_BITCOIN_ADDRESS = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"


class MockEthereumProvider(EventEmitter):
    def __init__(self, address: str = MOCK_EVM_ADDRESS, authorized: bool = False):
        super().__init__()
        self.address = address
        self.authorized = authorized
        self.reject_next = False
        self.calls: List[str] = []

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        self.calls.append(method)
        if method == "eth_requestAccounts":
            if self.reject_next:
                self.reject_next = False
                raise ProviderRpcError(USER_REJECTED_CODE, "User rejected the request.")
            self.authorized = True
            return [self.address]
        if method == "eth_accounts":
            return [self.address] if self.authorized else []
        if method == "eth_chainId":
            return "0x1"
        raise ProviderRpcError(4200, f"Unsupported method: {method}")

    def switch_account(self, address: Optional[str]) -> None:
        """Simulate the user picking another account (None = revoke)."""
        if address is None:
            self.authorized = False
        else:
            self.address = address
            self.authorized = True
        self.emit("accountsChanged", [address] if address else [])


class MockPhantomProvider(EventEmitter):
    is_phantom = True

    def __init__(self, address: str = MOCK_SOLANA_ADDRESS, trusted: bool = False):
        super().__init__()
        self.address = address
        self.trusted = trusted
        self.is_connected = False
        self.public_key: Optional[str] = None
        self.reject_next = False

    async def connect(self, only_if_trusted: bool = False) -> str:
        if only_if_trusted and not self.trusted:
            raise ProviderRpcError(USER_REJECTED_CODE, "User rejected the request.")
        if self.reject_next:
            self.reject_next = False
            raise ProviderRpcError(USER_REJECTED_CODE, "User rejected the request.")
        self.trusted = True
        self.is_connected = True
        self.public_key = self.address
        self.emit("connect", self.address)
        return self.address

    async def disconnect(self) -> None:
        self.is_connected = False
        self.public_key = None
        self.emit("disconnect")

    def switch_account(self, address: str) -> None:
        self.address = address
        if self.is_connected:
            self.public_key = address
        self.emit("accountChanged", address)


class MockSatsProvider:
    def __init__(self, address: str = MOCK_BITCOIN_ADDRESS, connected: bool = False):
        self.address = address
        self.connected = connected
        self.locked = False
        self.reject_next = False

    def _account(self) -> Dict[str, Any]:
        return {
            "status": "success",
            "result": {"addresses": [{"address": self.address, "purpose": "payment", "addressType": "p2wpkh"}]},
        }

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if self.locked:
            raise RuntimeError("Wallet locked")
        if method == "wallet_getAccount":
            if not self.connected:
                return {"status": "error", "error": {"code": -32002, "message": "Wallet not connected"}}
            return self._account()
        if method == "wallet_connect":
            if self.reject_next:
                self.reject_next = False
                return {"status": "error", "error": {"code": USER_REJECTED_CODE, "message": "User rejected"}}
            self.connected = True
            return self._account()
        return {"status": "error", "error": {"code": -32601, "message": f"Method not found: {method}"}}

    async def disconnect(self) -> None:
        self.connected = False


def mock_environment(app_url: str = "http://localhost:8000", user_agent: str = "") -> WalletEnvironment:
    return WalletEnvironment(
        ethereum=MockEthereumProvider(),
        solana=MockPhantomProvider(),
        bitcoin=MockSatsProvider(),
        user_agent=user_agent,
        app_url=app_url,
    )
