# app.py
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from loguru import logger

import bitcoin_proxy
import config
from chains.base import BalanceFetcher
from chains.bitcoin_api import BitcoinBalanceFetcher
from chains.evm_rpc import EvmBalanceFetcher
from chains.solana_rpc import SolanaBalanceFetcher
from core.aggregator import BalanceAggregator
from core.errors import MetadataUnavailable
from core.models import Ecosystem
from core.notifier import Notifier, TelegramNotifier
from enrich.token_list import TokenListClient, TokenMetadataCache
from links import explorer_address_link
from wallets.adapters import WalletAdapter, build_adapters
from wallets.controller import WalletConnectionController
from wallets.mock import mock_environment
from wallets.observer import WalletObserver
from wallets.providers import WalletEnvironment
from wallets.storage import WalletStore

# ============================================================
# LOGGING
# ============================================================


def setup_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, level=config.LOG_LEVEL)
    logger.add(
        config.LOG_FILE, level=config.LOG_LEVEL, rotation="10 MB", retention="10 days",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
    )


# ============================================================
# COMPOSITION ROOT
# ============================================================


@dataclass
class Dashboard:
    env: WalletEnvironment
    adapters: Dict[Ecosystem, WalletAdapter]
    notifier: Notifier
    observer: WalletObserver
    controller: WalletConnectionController
    token_cache: TokenMetadataCache
    aggregator: BalanceAggregator


def build_notifier() -> Notifier:
    if config.BOT_TOKEN and config.CHAT_ID is not None:
        return TelegramNotifier(config.BOT_TOKEN, config.CHAT_ID, interval=config.TG_MSG_INTERVAL)
    return Notifier()


def build_fetchers() -> Dict[Ecosystem, BalanceFetcher]:
    return {
        Ecosystem.EVM: EvmBalanceFetcher(
            rpc_url=config.EVM_RPC_URL, timeout=config.EVM_RPC_TIMEOUT, cache_ttl=config.BALANCE_CACHE_TTL
        ),
        Ecosystem.SOLANA: SolanaBalanceFetcher(
            endpoints=config.SOLANA_RPC_ENDPOINTS,
            timeout=config.SOLANA_RPC_TIMEOUT,
            cache_ttl=config.BALANCE_CACHE_TTL,
        ),
        Ecosystem.BITCOIN: BitcoinBalanceFetcher(
            proxy_url=config.BTC_PROXY_URL, timeout=config.BTC_FETCH_TIMEOUT, cache_ttl=config.BALANCE_CACHE_TTL
        ),
    }


def build_dashboard(
    env: Optional[WalletEnvironment] = None,
    notifier: Optional[Notifier] = None,
    store: Optional[WalletStore] = None,
    fetchers: Optional[Dict[Ecosystem, BalanceFetcher]] = None,
    token_cache: Optional[TokenMetadataCache] = None,
) -> Dashboard:
    if env is None:
        # a server has no injected wallets unless the mocks are switched on
        env = mock_environment(app_url=config.APP_URL) if config.WALLET_MOCKS else WalletEnvironment(app_url=config.APP_URL)
    notifier = notifier or build_notifier()
    adapters = build_adapters(env, connect_timeout=config.CONNECT_TIMEOUT)
    observer = WalletObserver(
        adapters,
        notifier=notifier,
        bitcoin_poll_interval=config.BTC_POLL_INTERVAL,
        query_timeout=config.CONNECT_TIMEOUT,
    )
    controller = WalletConnectionController(
        observer, adapters, notifier=notifier, store=store or WalletStore(config.WALLET_STATE_FILE)
    )
    if token_cache is None:
        token_cache = TokenMetadataCache(TokenListClient(config.TOKEN_LIST_URL), ttl_seconds=config.TOKEN_CACHE_TTL)
    if fetchers is None:
        fetchers = build_fetchers()
    aggregator = BalanceAggregator(fetchers, token_cache=token_cache)
    return Dashboard(env, adapters, notifier, observer, controller, token_cache, aggregator)


# ============================================================
# FASTAPI APP
# ============================================================


def _ecosystem(name: str) -> Ecosystem:
    try:
        return Ecosystem(name.strip().lower())
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown ecosystem: {name}") from None


def create_app(factory: Callable[[], Dashboard] = build_dashboard, setup_logs: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if setup_logs:
            setup_logging()
        dash = factory()
        app.state.dashboard = dash
        if isinstance(dash.notifier, TelegramNotifier):
            dash.notifier.start()
        restored = await dash.controller.restore()
        logger.info("Dashboard started, {} wallet(s) restored", sum(1 for _ in restored.connected()))
        try:
            yield
        finally:
            dash.controller.detach()
            await dash.observer.shutdown()
            if isinstance(dash.notifier, TelegramNotifier):
                await dash.notifier.stop()

    app = FastAPI(title="multi-chain-wallet", lifespan=lifespan)

    def dashboard() -> Dashboard:
        return app.state.dashboard

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/wallets")
    def wallets():
        controller = dashboard().controller
        body = controller.snapshot()
        body["links"] = {
            h.type.value: explorer_address_link(h.type.value, h.address) for h in controller.wallets.connected()
        }
        return body

    @app.post("/wallets/{ecosystem}/connect")
    async def connect(ecosystem: str):
        handle = await dashboard().controller.connect(_ecosystem(ecosystem))
        return {"ok": handle is not None, "wallet": handle.to_dict() if handle else None}

    @app.post("/wallets/{ecosystem}/disconnect")
    async def disconnect(ecosystem: str):
        await dashboard().controller.disconnect(_ecosystem(ecosystem))
        return {"ok": True}

    @app.get("/balances")
    async def balances():
        dash = dashboard()
        rows = await dash.aggregator.fetch_wallet_balances(dash.controller.wallets)
        return {"balances": [b.to_dict() for b in rows]}

    @app.get("/tokens")
    async def tokens():
        found = await dashboard().token_cache.get_tokens()
        return {
            "count": len(found),
            "tokens": {
                key: {
                    "address": t.address,
                    "chainId": t.chain_id,
                    "symbol": t.symbol,
                    "name": t.name,
                    "decimals": t.decimals,
                    "logoURI": t.logo_uri,
                    "priceUSD": t.price_usd,
                }
                for key, t in found.items()
            },
        }

    @app.get("/chains")
    async def chains():
        try:
            return await dashboard().token_cache.get_supported_chains()
        except MetadataUnavailable as e:
            raise HTTPException(status_code=502, detail=str(e)) from e

    app.mount("/api/bitcoin", bitcoin_proxy.app)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
