from __future__ import annotations

from typing import Optional


class WalletDashboardError(Exception):
    """Base for every error this service raises on purpose."""


class ConnectError(WalletDashboardError):
    def __init__(self, message: str, ecosystem: Optional[str] = None):
        super().__init__(message)
        self.ecosystem = ecosystem


class ProviderNotInstalled(ConnectError):
    pass


class UserRejected(ConnectError):
    pass


class ConnectTimeout(ConnectError):
    pass


class RedirectingToWallet(WalletDashboardError):
    """Mobile deep link opened; the connect attempt continues inside the wallet app."""

    def __init__(self, url: str):
        super().__init__(f"Redirecting to wallet app: {url}")
        self.url = url


class SourceUnavailable(WalletDashboardError):
    """Network or RPC failure while reading a balance."""


class AllEndpointsExhausted(SourceUnavailable):
    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(f"all {attempts} endpoints failed: {last_error!r}")
        self.attempts = attempts
        self.last_error = last_error


class MetadataUnavailable(WalletDashboardError):
    pass


class RateLimited(WalletDashboardError):
    def __init__(self, key: str, retry_after: float = 0.0):
        super().__init__(f"rate limited: {key}")
        self.key = key
        self.retry_after = retry_after


class MalformedPersistedState(WalletDashboardError):
    pass
