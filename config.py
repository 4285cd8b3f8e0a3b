# config.py
import os

# ============================================================
# ENV / CONFIG
# ============================================================


def _str(name: str, default: str) -> str:
    return os.getenv(name, default).strip() or default


def _float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be a number.") from e


def _int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer.") from e


# RPC / upstreams
EVM_RPC_URL = _str("EVM_RPC_URL", "https://ethereum-rpc.publicnode.com")
SOLANA_RPC_URL = _str("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com")
SOLANA_RPC_FALLBACKS = (
    "https://solana-mainnet.g.alchemy.com/v2/demo",
    "https://rpc.ankr.com/solana",
    "https://solana.public-rpc.com",
)
SOLANA_RPC_ENDPOINTS = (SOLANA_RPC_URL,) + tuple(u for u in SOLANA_RPC_FALLBACKS if u != SOLANA_RPC_URL)
BTC_PROXY_URL = _str("BTC_PROXY_URL", "http://127.0.0.1:8000/api/bitcoin")
BLOCKCYPHER_API_KEY = os.getenv("BLOCKCYPHER_API_KEY", "").strip()
TOKEN_LIST_URL = _str("TOKEN_LIST_URL", "https://li.quest/v1")

# Cache TTLs (seconds)
BALANCE_CACHE_TTL = _float("BALANCE_CACHE_TTL", 30.0)
TOKEN_CACHE_TTL = _float("TOKEN_CACHE_TTL", 5 * 60.0)
BTC_CACHE_TTL = _float("BTC_CACHE_TTL", 5 * 60.0)
# last-known Bitcoin answers kept this long for rate-limited fallbacks
BTC_STALE_TTL = _float("BTC_STALE_TTL", 60 * 60.0)

# Bitcoin proxy rate limiting: BTC_RATE_LIMIT requests per address per window
BTC_RATE_LIMIT = _int("BTC_RATE_LIMIT", 3)
BTC_RATE_WINDOW = _float("BTC_RATE_WINDOW", 60.0)

# Timeouts (seconds)
SOLANA_RPC_TIMEOUT = _float("SOLANA_RPC_TIMEOUT", 3.0)
EVM_RPC_TIMEOUT = _float("EVM_RPC_TIMEOUT", 5.0)
BTC_FETCH_TIMEOUT = _float("BTC_FETCH_TIMEOUT", 10.0)
CONNECT_TIMEOUT = _float("CONNECT_TIMEOUT", 10.0)

# Observer
BTC_POLL_INTERVAL = _float("BTC_POLL_INTERVAL", 10.0)

# Wallet state / environment
WALLET_STATE_FILE = _str("WALLET_STATE_FILE", "connected_wallets.json")
WALLET_MOCKS = os.getenv("WALLET_MOCKS", "0").strip().lower() in ("1", "true", "yes")
APP_URL = _str("APP_URL", "http://localhost:8000")

# Telegram (optional): both must be set to forward notifications
BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
CHAT_ID_RAW = os.getenv("TELEGRAM_CHAT_ID", "").strip()
TG_MSG_INTERVAL = _float("TG_MSG_INTERVAL", 1.0)
if CHAT_ID_RAW:
    try:
        CHAT_ID = int(CHAT_ID_RAW)
    except ValueError as e:
        raise RuntimeError("TELEGRAM_CHAT_ID must be an integer.") from e
else:
    CHAT_ID = None

# Logging
LOG_LEVEL = _str("LOG_LEVEL", "INFO").upper()
LOG_FILE = _str("LOG_FILE", "logs/dashboard.log")

PORT = _int("PORT", 8000)
