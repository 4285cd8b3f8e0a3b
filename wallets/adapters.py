from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Dict, Optional, TypeVar

from loguru import logger

from core.errors import (
    ConnectError,
    ConnectTimeout,
    ProviderNotInstalled,
    RedirectingToWallet,
    UserRejected,
)
from core.models import Ecosystem, WalletHandle, short_address
from links import phantom_browse_link
from wallets.providers import (
    USER_REJECTED_CODE,
    ProviderRpcError,
    WalletEnvironment,
    error_of,
    payment_address,
)

T = TypeVar("T")

# provider messages that mean "installed, just not connected right now"
BITCOIN_IDLE_HINTS = ("user rejected", "wallet locked", "wallet not connected", "not connected")


class WalletAdapter:
    """Uniform connect/disconnect/detection surface over one ecosystem's wallet."""

    ecosystem: Ecosystem
    provider_attr = ""
    wallet_name = "wallet"

    def __init__(self, env: WalletEnvironment, connect_timeout: float = 10.0):
        self.env = env
        self.connect_timeout = float(connect_timeout)

    @property
    def provider(self) -> Any:
        return getattr(self.env, self.provider_attr, None)

    async def is_installed(self) -> bool:
        return self.provider is not None

    async def connect(self) -> WalletHandle:
        raise NotImplementedError

    async def disconnect(self) -> None:
        raise NotImplementedError

    async def check_still_connected(self, handle: WalletHandle) -> bool:
        raise NotImplementedError

    def _require_provider(self) -> Any:
        provider = self.provider
        if provider is None:
            raise ProviderNotInstalled(f"{self.wallet_name} not installed", self.ecosystem.value)
        return provider

    async def _bounded(self, aw: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(aw, timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            raise ConnectTimeout("Connection timed out", self.ecosystem.value) from None

    def _classify(self, e: Exception) -> ConnectError:
        """Map a raw provider failure onto the connection error taxonomy."""
        if isinstance(e, ConnectError):
            return e
        eco = self.ecosystem.value
        if isinstance(e, ProviderRpcError) and e.code == USER_REJECTED_CODE:
            return UserRejected("Connection rejected by user", eco)
        msg = str(e).lower()
        if "not installed" in msg or "not found" in msg:
            return ProviderNotInstalled(f"{self.wallet_name} not installed", eco)
        if "user rejected" in msg or "cancelled" in msg or "canceled" in msg:
            return UserRejected("Connection rejected by user", eco)
        if "timed out" in msg:
            return ConnectTimeout("Connection timed out", eco)
        return ConnectError(f"Failed to connect to {self.wallet_name}", eco)


class EvmAdapter(WalletAdapter):
    ecosystem = Ecosystem.EVM
    provider_attr = "ethereum"
    wallet_name = "MetaMask"

    async def accounts(self) -> list:
        """Silent eth_accounts query; never prompts."""
        provider = self._require_provider()
        accounts = await provider.request("eth_accounts")
        return [a for a in (accounts or []) if isinstance(a, str) and a]

    async def connect(self) -> WalletHandle:
        provider = self._require_provider()
        try:
            accounts = await self._bounded(provider.request("eth_requestAccounts"))
        except ConnectError:
            raise
        except Exception as e:
            logger.error("Error connecting to EVM wallet: {}", e)
            raise self._classify(e) from e
        accounts = [a for a in (accounts or []) if isinstance(a, str) and a]
        if not accounts:
            raise ConnectError("No account found", self.ecosystem.value)
        return WalletHandle(address=accounts[0], type=self.ecosystem)

    async def disconnect(self) -> None:
        # connection state is ours, MetaMask has nothing to revoke
        logger.info("EVM wallet disconnected")

    async def check_still_connected(self, handle: WalletHandle) -> bool:
        if self.provider is None:
            return False
        try:
            accounts = await asyncio.wait_for(self.accounts(), timeout=self.connect_timeout)
        except Exception as e:
            logger.warning("Error checking EVM wallet connection: {}", e)
            return False
        return handle.address.lower() in {a.lower() for a in accounts}


class SolanaAdapter(WalletAdapter):
    ecosystem = Ecosystem.SOLANA
    provider_attr = "solana"
    wallet_name = "Phantom wallet"

    async def is_installed(self) -> bool:
        provider = self.provider
        if provider is not None:
            return bool(getattr(provider, "is_phantom", False))
        # mobile browsers reach Phantom through the deep link
        return self.env.is_mobile

    async def connect(self) -> WalletHandle:
        provider = self.provider
        if provider is None and self.env.is_mobile:
            url = phantom_browse_link(self.env.app_url)
            logger.info("Mobile browser, redirecting to Phantom: {}", url)
            self.env.open_url(url)
            raise RedirectingToWallet(url)
        provider = self._require_provider()

        try:
            address = await self._bounded(provider.connect())
        except ConnectError:
            raise
        except Exception as e:
            logger.error("Error connecting to Solana wallet: {}", e)
            raise self._classify(e) from e

        address = address or getattr(provider, "public_key", None)
        if not address:
            raise ConnectError("Failed to connect Phantom wallet", self.ecosystem.value)
        return WalletHandle(address=str(address), type=self.ecosystem)

    async def silent_connect(self) -> Optional[str]:
        """Reconnect without a prompt; works only for a previously trusted site."""
        provider = self._require_provider()
        address = await self._bounded(provider.connect(only_if_trusted=True))
        return str(address) if address else None

    async def disconnect(self) -> None:
        provider = self.provider
        try:
            if provider is not None and getattr(provider, "is_connected", False):
                await provider.disconnect()
            logger.info("Solana wallet disconnected")
        except Exception as e:
            logger.error("Error disconnecting Solana wallet: {}", e)

    async def check_still_connected(self, handle: WalletHandle) -> bool:
        provider = self.provider
        if provider is None:
            return False
        current = getattr(provider, "public_key", None)
        if getattr(provider, "is_connected", False) and current and str(current) != handle.address:
            return False
        return True


class BitcoinAdapter(WalletAdapter):
    ecosystem = Ecosystem.BITCOIN
    provider_attr = "bitcoin"
    wallet_name = "Xverse wallet"

    async def get_account(self) -> Optional[str]:
        """
        Silent wallet_getAccount. Returns the payment address, or None when the
        wallet answers but is not connected. Provider exceptions propagate.
        """
        provider = self._require_provider()
        response = await provider.request("wallet_getAccount", None)
        return payment_address(response)

    async def is_installed(self) -> bool:
        provider = self.provider
        if provider is None:
            return False
        try:
            response = await asyncio.wait_for(
                provider.request("wallet_getAccount", None), timeout=self.connect_timeout
            )
        except Exception as e:
            if any(h in str(e).lower() for h in BITCOIN_IDLE_HINTS):
                return True
            installed = getattr(provider, "get_installed_wallets", None)
            if installed is None:
                return False
            try:
                return len(await installed()) > 0
            except Exception:
                return False
        # any answer at all, success or a locked/not-connected error, means it exists
        return isinstance(response, dict)

    async def connect(self) -> WalletHandle:
        provider = self._require_provider()

        try:
            existing = await self._bounded(self.get_account())
        except Exception as e:
            logger.debug("No existing Bitcoin connection, will prompt: {}", e)
            existing = None
        if existing:
            logger.info("Bitcoin wallet already connected, using existing connection")
            return WalletHandle(address=existing, type=self.ecosystem)

        try:
            response = await self._bounded(
                provider.request(
                    "wallet_connect",
                    {"addresses": ["payment"], "message": "Connect to Multi-Chain Wallet"},
                )
            )
        except ConnectError:
            raise
        except Exception as e:
            logger.error("Error connecting to Bitcoin wallet: {}", e)
            raise self._classify(e) from e

        if isinstance(response, dict) and response.get("status") == "success":
            address = payment_address(response)
            if not address:
                raise ConnectError("No Bitcoin payment address found", self.ecosystem.value)
            return WalletHandle(address=address, type=self.ecosystem)

        err = error_of(response)
        if err.get("code") == USER_REJECTED_CODE:
            raise UserRejected("User cancelled the request", self.ecosystem.value)
        raise ConnectError(err.get("message") or "Failed to connect Bitcoin wallet", self.ecosystem.value)

    async def disconnect(self) -> None:
        provider = self.provider
        try:
            if provider is not None:
                await provider.disconnect()
            logger.info("Bitcoin wallet disconnected")
        except Exception as e:
            logger.error("Error disconnecting Bitcoin wallet: {}", e)

    async def check_still_connected(self, handle: WalletHandle) -> bool:
        if self.provider is None:
            return False
        try:
            address = await asyncio.wait_for(self.get_account(), timeout=self.connect_timeout)
        except Exception as e:
            logger.warning("Error checking Bitcoin wallet connection: {}", e)
            return False
        if address == handle.address:
            logger.info("Bitcoin wallet still connected: {}", short_address(address))
            return True
        return False


def build_adapters(env: WalletEnvironment, connect_timeout: float = 10.0) -> Dict[Ecosystem, WalletAdapter]:
    return {
        Ecosystem.EVM: EvmAdapter(env, connect_timeout),
        Ecosystem.SOLANA: SolanaAdapter(env, connect_timeout),
        Ecosystem.BITCOIN: BitcoinAdapter(env, connect_timeout),
    }
