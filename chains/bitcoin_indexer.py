from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import requests
from loguru import logger

from core.errors import AllEndpointsExhausted, SourceUnavailable
from core.http import build_session, call_with_timeout, strip_query


@dataclass(frozen=True)
class AddressSummary:
    """Upstream view of one address, amounts in satoshis."""
    address: str
    final_balance: int
    n_tx: int = 0
    total_received: int = 0
    total_sent: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _int(data: Dict[str, Any], key: str) -> int:
    val = data.get(key)
    if val is None:
        return 0
    return int(val)


def parse_blockcypher(address: str, data: Dict[str, Any]) -> AddressSummary:
    if "balance" not in data:
        raise ValueError("blockcypher response has no balance")
    return AddressSummary(
        address=address,
        final_balance=_int(data, "balance"),
        n_tx=_int(data, "n_tx"),
        total_received=_int(data, "total_received"),
        total_sent=_int(data, "total_sent"),
    )


def parse_blockchain_info(address: str, data: Dict[str, Any]) -> AddressSummary:
    if "final_balance" not in data:
        raise ValueError("blockchain.info response has no final_balance")
    return AddressSummary(
        address=address,
        final_balance=_int(data, "final_balance"),
        n_tx=_int(data, "n_tx"),
        total_received=_int(data, "total_received"),
        total_sent=_int(data, "total_sent"),
    )


def parse_blockstream(address: str, data: Dict[str, Any]) -> AddressSummary:
    stats = data.get("chain_stats")
    if not isinstance(stats, dict):
        raise ValueError("esplora response has no chain_stats")
    funded = _int(stats, "funded_txo_sum")
    spent = _int(stats, "spent_txo_sum")
    return AddressSummary(
        address=address,
        final_balance=funded - spent,
        n_tx=_int(stats, "tx_count"),
        total_received=funded,
        total_sent=spent,
    )


@dataclass(frozen=True)
class IndexerEndpoint:
    name: str
    url_template: str           # "{address}" is substituted
    parse: Callable[[str, Dict[str, Any]], AddressSummary]

    def url(self, address: str) -> str:
        return self.url_template.replace("{address}", address)


def default_endpoints(blockcypher_token: str = "") -> List[IndexerEndpoint]:
    blockcypher = "https://api.blockcypher.com/v1/btc/main/addrs/{address}/balance"
    if blockcypher_token:
        blockcypher += f"?token={blockcypher_token}"
    return [
        IndexerEndpoint("blockcypher", blockcypher, parse_blockcypher),
        IndexerEndpoint("blockchain.info", "https://blockchain.info/rawaddr/{address}?limit=1", parse_blockchain_info),
        IndexerEndpoint("blockstream", "https://blockstream.info/api/address/{address}", parse_blockstream),
    ]


class BitcoinIndexer:
    """
    Upstream address lookups for the Bitcoin proxy. Endpoints are tried in
    order; a 429 is retried on the same endpoint with exponential backoff
    (backoff_base, doubling) up to max_attempts before moving on.
    """

    def __init__(
        self,
        endpoints: Optional[Sequence[IndexerEndpoint]] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.endpoints = list(endpoints) if endpoints is not None else default_endpoints()
        self.session = session or build_session()
        self.timeout = float(timeout)
        self.max_attempts = int(max_attempts)
        self.backoff_base = float(backoff_base)
        self.sleep = sleep

    def _get(self, url: str) -> requests.Response:
        return self.session.get(url, timeout=self.timeout)

    async def _query(self, endpoint: IndexerEndpoint, address: str) -> AddressSummary:
        url = endpoint.url(address)
        for attempt in range(self.max_attempts):
            logger.debug(
                "Fetching Bitcoin data from {} (attempt {})", strip_query(url), attempt + 1
            )
            try:
                r = await call_with_timeout(self._get, url, timeout=self.timeout)
            except asyncio.TimeoutError as e:
                raise SourceUnavailable(f"{endpoint.name} timed out") from e
            except requests.RequestException as e:
                raise SourceUnavailable(f"{endpoint.name}: {e}") from e

            if r.status_code == 429:
                if attempt + 1 >= self.max_attempts:
                    break
                wait = self.backoff_base * (2 ** attempt)
                logger.info("{} rate limited, waiting {}s before retry", endpoint.name, wait)
                await self.sleep(wait)
                continue
            if not r.ok:
                raise SourceUnavailable(f"{endpoint.name} answered {r.status_code}")
            try:
                return endpoint.parse(address, r.json())
            except (ValueError, TypeError) as e:
                raise SourceUnavailable(f"{endpoint.name}: {e}") from e
        raise SourceUnavailable(f"{endpoint.name} still rate limited after {self.max_attempts} attempts")

    async def fetch_summary(self, address: str) -> AddressSummary:
        last_error: Optional[BaseException] = None
        for endpoint in self.endpoints:
            try:
                summary = await self._query(endpoint, address)
            except SourceUnavailable as e:
                logger.warning("Bitcoin endpoint failed: {}", e)
                last_error = e
                continue
            logger.info("Fetched Bitcoin balance from {}", endpoint.name)
            return summary
        raise AllEndpointsExhausted(len(self.endpoints), last_error)
