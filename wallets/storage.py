from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from loguru import logger

from core.errors import MalformedPersistedState
from core.models import ECOSYSTEMS, ConnectedWalletSet, Ecosystem, WalletHandle

STORAGE_KEY = "connected_wallets"


def parse_slot(ecosystem: Ecosystem, raw: Any) -> Optional[WalletHandle]:
    """A persisted slot, or None. Raises MalformedPersistedState for junk."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise MalformedPersistedState(f"{ecosystem.value}: not an object")
    address = raw.get("address")
    if not isinstance(address, str) or not address.strip():
        raise MalformedPersistedState(f"{ecosystem.value}: missing address")
    if raw.get("type") != ecosystem.value:
        raise MalformedPersistedState(f"{ecosystem.value}: type tag {raw.get('type')!r} does not match slot")
    return WalletHandle(address=address.strip(), type=ecosystem)


def wallet_set_from_dict(data: Any) -> ConnectedWalletSet:
    """Field-by-field validation; a bad slot becomes null without touching the others."""
    if not isinstance(data, dict):
        raise MalformedPersistedState("persisted wallets are not an object")
    slots: Dict[str, Optional[WalletHandle]] = {}
    for eco in ECOSYSTEMS:
        try:
            slots[eco.value] = parse_slot(eco, data.get(eco.value))
        except MalformedPersistedState as e:
            logger.warning("Discarding persisted wallet slot: {}", e)
            slots[eco.value] = None
    return ConnectedWalletSet(**slots)


class WalletStore:
    """
    One JSON file holding the serialized ConnectedWalletSet under a single key.
    Writes go to a temp file first and are renamed into place.
    """

    def __init__(self, path: Union[str, Path], key: str = STORAGE_KEY):
        self.path = Path(path)
        self.key = key

    def load(self) -> ConnectedWalletSet:
        if not self.path.exists():
            return ConnectedWalletSet()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                doc = json.load(f)
            if not isinstance(doc, dict):
                raise MalformedPersistedState("state file is not an object")
            stored = doc.get(self.key)
            if stored is None:
                return ConnectedWalletSet()
            return wallet_set_from_dict(stored)
        except (OSError, ValueError, MalformedPersistedState) as e:
            logger.error("Failed to load wallet connections from storage: {}", e)
            self.clear()
            return ConnectedWalletSet()

    def save(self, wallets: ConnectedWalletSet) -> None:
        doc = {self.key: wallets.to_dict()}
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(doc, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError as e:
            logger.error("Failed to save wallet connections to storage: {}", e)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error("Failed to clear wallet storage: {}", e)
