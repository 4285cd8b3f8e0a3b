"""
Capability interfaces for the wallet objects a browser injects
(window.ethereum, window.solana, the sats-connect bridge).

Adapters and the observer only talk to these protocols, so real bridges and
the mocks in wallets.mock are interchangeable.
"""
from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

# EIP-1193 / sats-connect rejection code
USER_REJECTED_CODE = 4001

Listener = Callable[..., None]

MOBILE_UA = re.compile(r"Android|iPhone|iPad|iPod|Mobile", re.IGNORECASE)


class ProviderRpcError(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = int(code)
        self.message = message


class EthereumProvider(Protocol):
    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any: ...

    def on(self, event: str, handler: Listener) -> None: ...

    def remove_listener(self, event: str, handler: Listener) -> None: ...


class SolanaProvider(Protocol):
    is_phantom: bool
    is_connected: bool
    public_key: Optional[str]

    async def connect(self, only_if_trusted: bool = False) -> str: ...

    async def disconnect(self) -> None: ...

    def on(self, event: str, handler: Listener) -> None: ...

    def remove_listener(self, event: str, handler: Listener) -> None: ...


class BitcoinProvider(Protocol):
    async def request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """sats-connect style: {"status": "success", "result": ...} or {"status": "error", "error": {...}}"""
        ...

    async def disconnect(self) -> None: ...


class EventEmitter:
    """Minimal on/remove_listener/emit registry for provider implementations."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def on(self, event: str, handler: Listener) -> None:
        self._listeners[event].append(handler)

    def remove_listener(self, event: str, handler: Listener) -> None:
        handlers = self._listeners.get(event) or []
        if handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event) or [])

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._listeners.get(event) or []):
            handler(*args)


@dataclass
class WalletEnvironment:
    """What the client side exposes: injected providers plus a little context."""
    ethereum: Optional[EthereumProvider] = None
    solana: Optional[SolanaProvider] = None
    bitcoin: Optional[BitcoinProvider] = None
    user_agent: str = ""
    app_url: str = "http://localhost:8000"
    open_url: Callable[[str], None] = field(default=lambda url: None, repr=False)

    @property
    def is_mobile(self) -> bool:
        return bool(MOBILE_UA.search(self.user_agent or ""))


def payment_address(response: Dict[str, Any]) -> Optional[str]:
    """Payment address out of a successful wallet_getAccount / wallet_connect response."""
    if not isinstance(response, dict) or response.get("status") != "success":
        return None
    result = response.get("result") or {}
    for item in result.get("addresses") or []:
        if isinstance(item, dict) and item.get("purpose") == "payment" and item.get("address"):
            return str(item["address"])
    return None


def error_of(response: Dict[str, Any]) -> Dict[str, Any]:
    err = response.get("error") if isinstance(response, dict) else None
    return err if isinstance(err, dict) else {}
