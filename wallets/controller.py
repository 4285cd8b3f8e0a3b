from __future__ import annotations

from typing import Callable, Dict, List, Optional, Set

from loguru import logger

from core.errors import ConnectError, ProviderNotInstalled, RedirectingToWallet
from core.models import (
    ECOSYSTEMS,
    AccountChanged,
    Connected,
    ConnectedWalletSet,
    Disconnected,
    Ecosystem,
    WalletEvent,
    WalletHandle,
)
from core.notifier import Notifier
from wallets.adapters import WalletAdapter
from wallets.observer import WalletObserver
from wallets.storage import WalletStore

SnapshotListener = Callable[[ConnectedWalletSet], None]


class WalletConnectionController:
    """
    Keeps the ConnectedWalletSet snapshot the rest of the app reads, and the
    connect/disconnect actions the UI triggers.

    The observer is the only writer: connect() and disconnect() report the new
    address to the observer, and the snapshot changes in handle_event(). Since
    the observer emits synchronously, the snapshot is already updated when those
    calls return.
    """

    def __init__(
        self,
        observer: WalletObserver,
        adapters: Dict[Ecosystem, WalletAdapter],
        notifier: Optional[Notifier] = None,
        store: Optional[WalletStore] = None,
    ):
        self.observer = observer
        self.adapters = adapters
        self.notifier = notifier or Notifier()
        self.store = store
        self._wallets = ConnectedWalletSet()
        self._connecting: Set[Ecosystem] = set()
        self._listeners: List[SnapshotListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def wallets(self) -> ConnectedWalletSet:
        return self._wallets

    @property
    def is_connecting(self) -> bool:
        return bool(self._connecting)

    def connecting(self, ecosystem: Ecosystem) -> bool:
        return Ecosystem(ecosystem) in self._connecting

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # ---- observer wiring ----

    def attach(self) -> None:
        if self._unsubscribe is not None:
            return
        # pick up whatever the observer already knows
        wallets = ConnectedWalletSet()
        for eco, address in self.observer.addresses().items():
            if address:
                wallets = wallets.with_slot(eco, WalletHandle(address=address, type=eco))
        self._set(wallets)
        self._unsubscribe = self.observer.subscribe(self.handle_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def handle_event(self, event: WalletEvent) -> None:
        if isinstance(event, (Connected, AccountChanged)):
            handle = WalletHandle(address=event.address, type=event.ecosystem)
            self._set(self._wallets.with_slot(event.ecosystem, handle))
        elif isinstance(event, Disconnected):
            self._set(self._wallets.with_slot(event.ecosystem, None))
        else:
            raise TypeError(f"unknown wallet event: {event!r}")

    def _set(self, wallets: ConnectedWalletSet) -> None:
        if wallets == self._wallets:
            return
        self._wallets = wallets
        if self.store is not None:
            self.store.save(wallets)
        for listener in list(self._listeners):
            try:
                listener(wallets)
            except Exception:
                logger.exception("wallet snapshot listener failed")

    # ---- actions ----

    async def restore(self) -> ConnectedWalletSet:
        """Bring back persisted wallets that the providers still vouch for."""
        self.attach()
        if self.store is None:
            return self._wallets
        saved = self.store.load()
        current = self.observer.addresses()
        for handle in saved.connected():
            if current.get(handle.type):
                continue
            adapter = self.adapters.get(handle.type)
            if adapter is None:
                continue
            if await adapter.check_still_connected(handle):
                self.observer.update_address(handle.type, handle.address)
            else:
                logger.info("Persisted {} wallet no longer connected", handle.type.value)
        if self._wallets != saved:
            self.store.save(self._wallets)
        return self._wallets

    async def connect(self, ecosystem: Ecosystem) -> Optional[WalletHandle]:
        ecosystem = Ecosystem(ecosystem)
        self.attach()
        if ecosystem in self._connecting:
            logger.info("{} connect already in progress", ecosystem.value)
            return None

        self._connecting.add(ecosystem)
        try:
            adapter = self.adapters[ecosystem]
            if not await adapter.is_installed():
                raise ProviderNotInstalled(
                    f"{ecosystem.value.capitalize()} wallet is not installed", ecosystem.value
                )
            handle = await adapter.connect()
        except RedirectingToWallet:
            self.notifier.info("Continue in your wallet app")
            return None
        except ConnectError as e:
            logger.warning("Failed to connect {} wallet: {}", ecosystem.value, e)
            self.notifier.error(str(e))
            return None
        except Exception:
            logger.exception("Failed to connect {} wallet", ecosystem.value)
            self.notifier.error("Failed to connect wallet")
            return None
        finally:
            self._connecting.discard(ecosystem)

        self.observer.update_address(ecosystem, handle.address)
        self.notifier.success(f"{ecosystem.value.upper()} wallet connected")
        return handle

    async def disconnect(self, ecosystem: Ecosystem) -> None:
        ecosystem = Ecosystem(ecosystem)
        self.attach()
        # clear first: provider-level disconnects may never signal back
        self.observer.update_address(ecosystem, None)
        adapter = self.adapters.get(ecosystem)
        if adapter is not None:
            await adapter.disconnect()
        self.notifier.success(f"{ecosystem.value.upper()} wallet disconnected")

    def snapshot(self) -> Dict[str, object]:
        return {
            "wallets": self._wallets.to_dict(),
            "connecting": {eco.value: eco in self._connecting for eco in ECOSYSTEMS},
        }
