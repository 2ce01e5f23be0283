"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from investsync.assets import router as assets_router
from investsync.config import LOG_LEVEL
from investsync.db import close_db, init_db
from investsync.jobs.file_sync import FileSyncError, FileSyncService
from investsync.jobs.scheduler import start_scheduler, stop_scheduler
from investsync.jobs.sync import SyncError, trigger_manual_sync
from investsync.providers import build_providers
from investsync.services.currency import CurrencyConverter
from investsync.services.market_data import MarketDataResolver
from investsync.services.ynab import LedgerError, YnabClient
from investsync.user_settings import router as settings_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup, clean up on shutdown."""
    await init_db()
    app.state.converter = CurrencyConverter()
    app.state.resolver = MarketDataResolver(build_providers(app.state.converter))
    app.state.ledger = YnabClient()
    app.state.file_sync = FileSyncService(app.state.resolver, app.state.ledger)
    await app.state.file_sync.fetch_config()
    app.state.scheduler = start_scheduler(
        resolver=app.state.resolver,
        ledger=app.state.ledger,
        file_sync=app.state.file_sync,
    )

    logger.info("InvestSync started")
    yield

    stop_scheduler()
    await app.state.file_sync.close()
    await app.state.ledger.close()
    await app.state.resolver.close()
    await app.state.converter.close()
    await close_db()
    logger.info("InvestSync stopped")


app = FastAPI(title="InvestSync", lifespan=lifespan)
app.include_router(assets_router)
app.include_router(settings_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _split_symbols(raw: str) -> list[str]:
    return [s.strip() for s in raw.split(",") if s.strip()]


@app.get("/api/health")
async def health() -> dict:
    """Return service health status."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api/market-data/prices")
async def prices(
    symbols: str = Query(..., description="Comma-separated symbols, e.g. AAPL,BTC"),
    currency: str = Query("USD", min_length=3, max_length=3),
    detailed: bool = Query(False, description="Log per-provider resolution details"),
) -> dict:
    """Resolve prices through the provider waterfall."""
    requested = _split_symbols(symbols)
    if not requested:
        raise HTTPException(status_code=400, detail="At least one symbol is required")

    result = await app.state.resolver.resolve(requested, currency.upper(), log_unresolved=detailed)
    return {
        "currency": currency.upper(),
        "found": result["found"],
        "not_found": result["not_found"],
    }


@app.get("/api/market-data/convert")
async def convert(
    amount: float = Query(...),
    from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
    to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
) -> dict:
    converted = await app.state.converter.convert(amount, from_currency, to_currency)
    return {
        "amount": amount,
        "from": from_currency.upper(),
        "to": to_currency.upper(),
        "converted": converted,
    }


@app.get("/api/market-data/providers")
async def providers() -> dict:
    """Available providers in priority order."""
    names = app.state.resolver.available_providers
    return {"providers": names, "count": len(names)}


@app.post("/api/sync")
async def sync_now() -> dict:
    """Reconcile all accounts with stored holdings now."""
    try:
        report = await trigger_manual_sync(app.state.resolver, app.state.ledger)
    except SyncError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except LedgerError as exc:
        logger.error("Manual sync failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc))
    return {"status": "ok", **report}


@app.post("/api/file-sync")
async def file_sync_now() -> dict:
    """Refresh the holdings file and reconcile its accounts now."""
    try:
        accounts = await app.state.file_sync.trigger_manual_sync()
    except FileSyncError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except LedgerError as exc:
        logger.error("Manual file sync failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc))
    return {"status": "ok", "accounts": accounts}
