# bitcoin_proxy.py
"""
Same-origin Bitcoin balance proxy. The dashboard never calls the public
indexers directly: this service caches answers per address, rate-limits
each address in fixed windows, and walks the upstream list on failure.

  GET /balance?address=<btc-address>  -> {"balance": "0.12345678"}
  GET /address?address=<btc-address>  -> indexer summary in satoshis
"""
import time
from typing import Callable, Optional, Tuple

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from loguru import logger

import config
from chains.bitcoin_indexer import AddressSummary, BitcoinIndexer, default_endpoints
from core.cache import TTLCache
from core.errors import AllEndpointsExhausted, RateLimited
from core.models import DISPLAY_PLACES, NATIVE_DECIMALS, Ecosystem, format_units, short_address
from core.ratelimit import FixedWindowRateLimiter

ZERO_BTC = "0.00000000"
# how often lookup() drops cache entries older than stale_ttl
PRUNE_INTERVAL = 60.0


def format_btc(sats: int) -> str:
    return format_units(sats, NATIVE_DECIMALS[Ecosystem.BITCOIN], DISPLAY_PLACES[Ecosystem.BITCOIN])


class BitcoinProxy:
    def __init__(
        self,
        indexer: BitcoinIndexer,
        cache_ttl: float = 300.0,
        rate_limit: int = 3,
        rate_window: float = 60.0,
        stale_ttl: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ):
        self.indexer = indexer
        self.cache: TTLCache[str, AddressSummary] = TTLCache(cache_ttl, clock=clock)
        self.limiter = FixedWindowRateLimiter(rate_limit, rate_window, clock=clock)
        self.stale_ttl = max(float(stale_ttl), float(cache_ttl))
        self.clock = clock
        self._pruned = clock()

    async def lookup(self, address: str) -> AddressSummary:
        """Cached summary, or one upstream attempt sequence if the address is under its limit."""
        self._maybe_prune()
        cached = self.cache.get(address)
        if cached is not None:
            logger.debug("Returning cached Bitcoin data for {}", short_address(address))
            return cached
        # only the request that starts an upstream fetch is counted
        if not self.cache.pending(address):
            self.limiter.check(address)
        return await self.cache.get_or_fetch(address, lambda: self.indexer.fetch_summary(address))

    def _maybe_prune(self) -> None:
        now = self.clock()
        if now - self._pruned < PRUNE_INTERVAL:
            return
        self._pruned = now
        dropped = self.cache.prune(self.stale_ttl)
        if dropped:
            logger.debug("Pruned {} expired Bitcoin cache entries", dropped)

    def stale(self, address: str) -> Tuple[AddressSummary, bool]:
        """Last known summary (expired or not), else zeros. Second item: was it real data."""
        entry = self.cache.entry(address)
        if entry is not None:
            return entry.data, True
        return AddressSummary(address=address, final_balance=0), False


def _missing_address() -> JSONResponse:
    return JSONResponse({"error": "Bitcoin address is required"}, status_code=400)


def create_app(proxy: Optional[BitcoinProxy] = None) -> FastAPI:
    if proxy is None:
        proxy = BitcoinProxy(
            BitcoinIndexer(endpoints=default_endpoints(config.BLOCKCYPHER_API_KEY)),
            cache_ttl=config.BTC_CACHE_TTL,
            rate_limit=config.BTC_RATE_LIMIT,
            rate_window=config.BTC_RATE_WINDOW,
            stale_ttl=config.BTC_STALE_TTL,
        )

    app = FastAPI(title="bitcoin-proxy")
    app.state.proxy = proxy

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/balance")
    async def balance(address: str = ""):
        address = address.strip()
        if not address:
            return _missing_address()
        try:
            summary = await proxy.lookup(address)
        except RateLimited:
            logger.info("Rate limit exceeded for Bitcoin address {}", short_address(address))
            last, known = proxy.stale(address)
            body = {"balance": format_btc(last.final_balance), "stale": True}
            if not known:
                body["error"] = "rate limited"
            return body
        except AllEndpointsExhausted:
            logger.error("All Bitcoin endpoints failed for {}", short_address(address))
            return JSONResponse(
                {"error": "Failed to fetch Bitcoin balance", "balance": ZERO_BTC}, status_code=503
            )
        except Exception:
            logger.exception("Error in Bitcoin balance API")
            return JSONResponse(
                {"error": "Failed to fetch Bitcoin balance", "balance": ZERO_BTC}, status_code=500
            )
        return {"balance": format_btc(summary.final_balance)}

    @app.get("/address")
    async def address_summary(address: str = ""):
        address = address.strip()
        if not address:
            return _missing_address()
        try:
            summary = await proxy.lookup(address)
        except (RateLimited, AllEndpointsExhausted) as e:
            logger.info("Serving substitute Bitcoin data for {}: {}", short_address(address), e)
            last, _ = proxy.stale(address)
            return {**last.to_dict(), "stale": True}
        except Exception:
            logger.exception("Error in Bitcoin proxy API")
            last, _ = proxy.stale(address)
            return {**last.to_dict(), "stale": True}
        return {**summary.to_dict(), "stale": False}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
