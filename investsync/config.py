"""Configuration: env vars, provider credentials, rate limits, sync settings."""

import os
from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# Market-data provider credentials
# ---------------------------------------------------------------------------
COINMARKETCAP_API_KEY: str = os.getenv("COINMARKETCAP_API_KEY", "")
FINNHUB_API_KEY: str = os.getenv("FINNHUB_API_KEY", "")
ALPHA_VANTAGE_API_KEY: str = os.getenv("ALPHA_VANTAGE_API_KEY", "")
POLYGON_API_KEY: str = os.getenv("POLYGON_API_KEY", "")
FMP_API_KEY: str = os.getenv("FMP_API_KEY", "")

# ---------------------------------------------------------------------------
# Ledger (YNAB)
# ---------------------------------------------------------------------------
YNAB_API_KEY: str = os.getenv("YNAB_API_KEY", "")
YNAB_BASE_URL: str = os.getenv("YNAB_BASE_URL", "https://api.youneedabudget.com/v1")

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
DATABASE_URL: str = os.getenv("DATABASE_URL", "")
DATABASE_PATH: str = os.getenv("DATABASE_PATH", "investsync.db")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# ---------------------------------------------------------------------------
# HTTP + currency conversion
# ---------------------------------------------------------------------------
HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
EXCHANGE_RATE_BASE_URL: str = os.getenv(
    "EXCHANGE_RATE_BASE_URL", "https://api.exchangerate-api.com/v4/latest"
)
CURRENCY_CACHE_TTL_SECONDS: float = float(
    os.getenv("CURRENCY_CACHE_TTL_SECONDS", str(30 * 60))
)

# ---------------------------------------------------------------------------
# Per-provider quotas: (requests, window in seconds)
# ---------------------------------------------------------------------------
PROVIDER_RATE_LIMITS: dict[str, tuple[int, float]] = {
    "finnhub": (60, 60.0),           # free tier, per minute
    "alpha_vantage": (5, 60.0),      # free tier, per minute
    "polygon": (5, 60.0),            # free tier, per minute
    "fmp": (250, 24 * 60 * 60.0),    # free tier, per day (hard cap)
}

# ---------------------------------------------------------------------------
# Reconciliation + sync
# ---------------------------------------------------------------------------
# Adjustments smaller than this (in account currency) are treated as noise.
RECONCILE_THRESHOLD: float = 0.01

# Ledger amounts are integer milliunits.
LEDGER_MINOR_UNITS: int = 1000

RECONCILE_PAYEE: str = "Investment Portfolio Reconciliation"

SYNC_HOUR: int = int(os.getenv("SYNC_HOUR", "8"))
SYNC_TIMEZONE: str = os.getenv("SYNC_TIMEZONE", "UTC")

SYNC_SCHEDULES: tuple[str, ...] = (
    "daily",
    "every_two_days",
    "weekly",
    "every_two_weeks",
    "monthly_first",
    "monthly_last",
)

# ---------------------------------------------------------------------------
# YAML holdings file
# ---------------------------------------------------------------------------
INVESTMENTS_CONFIG_FILE_URL: str = os.getenv("INVESTMENTS_CONFIG_FILE_URL", "")
FILE_SYNC_HOUR: int = int(os.getenv("FILE_SYNC_HOUR", "21"))
FILE_SYNC_MIN_INTERVAL_HOURS: float = 24.0
