from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple, Union


class Ecosystem(str, Enum):
    EVM = "evm"
    SOLANA = "solana"
    BITCOIN = "bitcoin"


# Fixed order used everywhere results are listed
ECOSYSTEMS: Tuple[Ecosystem, ...] = (Ecosystem.EVM, Ecosystem.SOLANA, Ecosystem.BITCOIN)

NATIVE_SYMBOL = {
    Ecosystem.EVM: "ETH",
    Ecosystem.SOLANA: "SOL",
    Ecosystem.BITCOIN: "BTC",
}

# base-unit exponent (wei, lamports, satoshis)
NATIVE_DECIMALS = {
    Ecosystem.EVM: 18,
    Ecosystem.SOLANA: 9,
    Ecosystem.BITCOIN: 8,
}

# fractional digits shown per chain
DISPLAY_PLACES = {
    Ecosystem.EVM: 4,
    Ecosystem.SOLANA: 4,
    Ecosystem.BITCOIN: 8,
}


def format_units(base_units: int, decimals: int, places: int) -> str:
    """Integer base units -> fixed-point decimal string, no float involved."""
    if base_units < 0:
        raise ValueError("balance cannot be negative")
    value = Decimal(int(base_units)) / (Decimal(10) ** decimals)
    # "f" keeps 0.00000000 from rendering as 0E-8
    return format(value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP), "f")


def zero_amount(ecosystem: Ecosystem) -> str:
    return format_units(0, NATIVE_DECIMALS[ecosystem], DISPLAY_PLACES[ecosystem])


def short_address(address: str) -> str:
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


@dataclass(frozen=True)
class WalletHandle:
    """One connected account on one ecosystem."""
    address: str
    type: Ecosystem

    def __post_init__(self):
        if not isinstance(self.address, str) or not self.address:
            raise ValueError("wallet address is required")
        # accept the plain tag string as well
        object.__setattr__(self, "type", Ecosystem(self.type))

    @property
    def display(self) -> str:
        return f"{self.type.value}:{short_address(self.address)}"

    def to_dict(self) -> Dict[str, str]:
        return {"address": self.address, "type": self.type.value}


@dataclass(frozen=True)
class ConnectedWalletSet:
    """At most one handle per ecosystem; replaced, never mutated."""
    evm: Optional[WalletHandle] = None
    solana: Optional[WalletHandle] = None
    bitcoin: Optional[WalletHandle] = None

    def __post_init__(self):
        for eco in ECOSYSTEMS:
            handle = getattr(self, eco.value)
            if handle is not None and handle.type is not eco:
                raise ValueError(f"{eco.value} slot holds a {handle.type.value} handle")

    def get(self, ecosystem: Ecosystem) -> Optional[WalletHandle]:
        return getattr(self, Ecosystem(ecosystem).value)

    def with_slot(self, ecosystem: Ecosystem, handle: Optional[WalletHandle]) -> "ConnectedWalletSet":
        slots = {eco.value: self.get(eco) for eco in ECOSYSTEMS}
        slots[Ecosystem(ecosystem).value] = handle
        return ConnectedWalletSet(**slots)

    def connected(self) -> Iterator[WalletHandle]:
        for eco in ECOSYSTEMS:
            handle = self.get(eco)
            if handle is not None:
                yield handle

    def is_empty(self) -> bool:
        return not any(True for _ in self.connected())

    def to_dict(self) -> Dict[str, Optional[Dict[str, str]]]:
        out: Dict[str, Optional[Dict[str, str]]] = {}
        for eco in ECOSYSTEMS:
            handle = self.get(eco)
            out[eco.value] = handle.to_dict() if handle else None
        return out


@dataclass(frozen=True)
class Connected:
    ecosystem: Ecosystem
    address: str


@dataclass(frozen=True)
class Disconnected:
    ecosystem: Ecosystem


@dataclass(frozen=True)
class AccountChanged:
    ecosystem: Ecosystem
    address: str


WalletEvent = Union[Connected, Disconnected, AccountChanged]


@dataclass(frozen=True)
class Balance:
    token: str                  # "ETH", "SOL", "BTC" or a metadata symbol
    amount: str                 # fixed-point decimal string
    wallet: str                 # display tag, e.g. "evm:0xABC1...1234"

    def to_dict(self) -> Dict[str, str]:
        return {"token": self.token, "amount": self.amount, "wallet": self.wallet}


@dataclass(frozen=True)
class TokenMetadata:
    address: str
    chain_id: int
    symbol: str
    name: str
    decimals: int
    logo_uri: Optional[str] = None
    price_usd: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "TokenMetadata":
        price = raw.get("priceUSD")
        try:
            price_usd = float(price) if price not in (None, "") else None
        except (TypeError, ValueError):
            price_usd = None
        return cls(
            address=str(raw.get("address") or ""),
            chain_id=int(raw.get("chainId") or 0),
            symbol=str(raw.get("symbol") or ""),
            name=str(raw.get("name") or ""),
            decimals=int(raw.get("decimals") or 0),
            logo_uri=raw.get("logoURI") or None,
            price_usd=price_usd,
            extra={k: v for k, v in raw.items() if k == "coinKey"},
        )
