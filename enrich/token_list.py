from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

import requests
from loguru import logger

from core.cache import TTLCache
from core.errors import MetadataUnavailable
from core.http import build_session, call_with_timeout
from core.models import TokenMetadata

TOKENS_KEY = "tokens"


class TokenListClient:
    """
    LI.FI token list (docs):
      - GET https://li.quest/v1/tokens  -> {"tokens": {...}}
      - GET https://li.quest/v1/chains  -> {"chains": [...]}
    """
    BASE = "https://li.quest/v1"

    def __init__(self, base: str = BASE, session: Optional[requests.Session] = None, timeout: float = 20.0):
        self.base = base.rstrip("/")
        self.session = session or build_session(retries=2)
        self.timeout = float(timeout)

    def get_all_tokens(self) -> Dict[str, TokenMetadata]:
        r = self.session.get(f"{self.base}/tokens", timeout=self.timeout)
        r.raise_for_status()
        data = r.json() or {}
        return parse_tokens(data.get("tokens") if isinstance(data, dict) else None)

    def get_supported_chains(self) -> Any:
        r = self.session.get(f"{self.base}/chains", timeout=self.timeout)
        r.raise_for_status()
        return r.json()


def parse_tokens(raw: Any) -> Dict[str, TokenMetadata]:
    """
    Accepts either an id -> token mapping or the chainId -> [token, ...]
    grouping LI.FI actually serves. List entries get "chainId:address" ids.
    """
    if not isinstance(raw, dict):
        raise ValueError("token list response has no tokens mapping")
    out: Dict[str, TokenMetadata] = {}
    for key, val in raw.items():
        if isinstance(val, list):
            for item in val:
                if not isinstance(item, dict):
                    continue
                token = TokenMetadata.from_api(item)
                out[f"{token.chain_id}:{token.address}"] = token
        elif isinstance(val, dict):
            out[str(key)] = TokenMetadata.from_api(val)
    return out


class TokenMetadataCache:
    """
    Single-flight, TTL-cached token list. get_tokens() never raises: on a
    failed refresh it serves the last good list, or an empty mapping.
    """

    def __init__(
        self,
        client: TokenListClient,
        ttl_seconds: float = 300.0,
        timeout: float = 20.0,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.timeout = float(timeout)
        self.cache: TTLCache[str, Dict[str, TokenMetadata]] = TTLCache(ttl_seconds, clock=clock)

    async def _load(self) -> Dict[str, TokenMetadata]:
        try:
            return await call_with_timeout(self.client.get_all_tokens, timeout=self.timeout)
        except Exception as e:
            raise MetadataUnavailable(f"Error fetching tokens: {e}") from e

    async def get_tokens(self) -> Dict[str, TokenMetadata]:
        try:
            return await self.cache.get_or_fetch(TOKENS_KEY, self._load)
        except MetadataUnavailable as e:
            logger.warning("{}", e)
            last = self.cache.entry(TOKENS_KEY)
            return last.data if last is not None else {}

    async def get_supported_chains(self) -> Any:
        try:
            return await call_with_timeout(self.client.get_supported_chains, timeout=self.timeout)
        except Exception as e:
            raise MetadataUnavailable(f"Error fetching chains: {e}") from e
