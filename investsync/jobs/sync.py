"""Portfolio sync: price every holding and reconcile each YNAB account.

Runs from the daily scheduler job and from ``POST /api/sync``.  Runs are
serialised with a module-level lock so two overlapping syncs cannot post
duplicate adjustments.
"""

from __future__ import annotations

import asyncio
import calendar
import logging
from collections import defaultdict
from datetime import date
from typing import Optional, TypedDict

from investsync.assets import AssetRecord, list_assets
from investsync.providers.base import PriceQuote
from investsync.services.market_data import MarketDataResolver
from investsync.services.reconciliation import (
    Holding,
    build_memo,
    compute_adjustment,
    needs_transaction,
)
from investsync.services.ynab import LedgerAccount, YnabClient
from investsync.user_settings import SettingsRecord, get_settings

logger = logging.getLogger(__name__)

sync_lock = asyncio.Lock()


class SyncError(Exception):
    """Raised when a sync cannot start (e.g. no settings stored)."""


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


class AccountSyncResult(TypedDict):
    account_id: str
    account_name: str
    currency: str
    current_balance: float
    target_balance: float
    adjustment: float
    contributing_symbols: list[str]
    transaction_posted: bool


class SyncReport(TypedDict):
    accounts: list[AccountSyncResult]
    not_found: list[str]
    skipped_accounts: list[str]


# ---------------------------------------------------------------------------
# Schedule rules
# ---------------------------------------------------------------------------


def should_sync(schedule: str, today: date) -> bool:
    """Whether the daily job should run a sync for *schedule* on *today*."""
    day = today.day
    if schedule == "daily":
        return True
    if schedule == "every_two_days":
        return day % 2 == 0
    if schedule == "weekly":
        return today.weekday() == 0
    if schedule == "every_two_weeks":
        week_of_month = (day + 6) // 7
        return today.weekday() == 0 and week_of_month % 2 == 0
    if schedule == "monthly_first":
        return day == 1
    if schedule == "monthly_last":
        return day == calendar.monthrange(today.year, today.month)[1]

    logger.warning("Unknown sync schedule %r, not syncing", schedule)
    return False


# ---------------------------------------------------------------------------
# Per-account reconciliation
# ---------------------------------------------------------------------------


async def reconcile_account(
    ledger: YnabClient,
    token: str,
    budget_id: Optional[str],
    account: LedgerAccount,
    holdings: list[Holding],
    quotes: dict[str, PriceQuote],
    on: Optional[date] = None,
) -> AccountSyncResult:
    """Compute the adjustment for one account and post it when significant.

    Accounts where no holding could be priced are left untouched.
    """
    result = compute_adjustment(account["id"], holdings, quotes, account["balance"])
    for holding in holdings:
        quote = quotes.get(holding["symbol"].upper())
        if quote is not None:
            logger.info(
                "Asset %s: %s x %s %s = %.2f",
                holding["symbol"], holding["amount"], quote["price"], quote["currency"],
                holding["amount"] * quote["price"],
            )

    posted = False
    if not result["contributing_symbols"]:
        logger.warning("No priced holdings for account %s, leaving balance as is", account["name"])
    elif needs_transaction(result):
        await ledger.append_adjustment_transaction(
            token, budget_id, account["id"], result["adjustment"], build_memo(result), on=on,
        )
        posted = True
    else:
        logger.info(
            "Account %s already matches portfolio value (%.2f %s)",
            account["name"], result["target_balance"], account["currency"],
        )

    return {
        "account_id": account["id"],
        "account_name": account["name"],
        "currency": account["currency"],
        "current_balance": result["current_balance"],
        "target_balance": result["target_balance"],
        "adjustment": result["adjustment"],
        "contributing_symbols": result["contributing_symbols"],
        "transaction_posted": posted,
    }


def _quotes_by_symbol(found: list[PriceQuote]) -> dict[str, PriceQuote]:
    return {q["symbol"].upper(): q for q in found}


# ---------------------------------------------------------------------------
# Sync run
# ---------------------------------------------------------------------------


async def perform_sync(
    settings: SettingsRecord,
    resolver: MarketDataResolver,
    ledger: YnabClient,
    on: Optional[date] = None,
) -> SyncReport:
    """Reconcile every account that holds stored assets.

    Prices are resolved once per account currency.  ``LedgerError`` from
    YNAB propagates and aborts the run.
    """
    report: SyncReport = {"accounts": [], "not_found": [], "skipped_accounts": []}

    async with sync_lock:
        logger.info("Starting portfolio sync")
        assets = await list_assets()
        if not assets:
            logger.info("No assets to sync")
            return report

        by_account: dict[str, list[AssetRecord]] = defaultdict(list)
        for asset in assets:
            by_account[asset["ynab_account_id"]].append(asset)

        token = settings["ynab_api_token"]
        budget_id = settings["target_budget_id"]
        accounts = {a["id"]: a for a in await ledger.list_accounts(token, budget_id)}

        symbols_by_currency: dict[str, list[str]] = defaultdict(list)
        for account_id, account_assets in by_account.items():
            account = accounts.get(account_id)
            if account is None:
                continue
            symbols_by_currency[account["currency"]].extend(a["symbol"] for a in account_assets)

        quotes_by_currency: dict[str, dict[str, PriceQuote]] = {}
        for currency, symbols in symbols_by_currency.items():
            resolution = await resolver.resolve(symbols, currency, log_unresolved=True)
            quotes_by_currency[currency] = _quotes_by_symbol(resolution["found"])
            report["not_found"].extend(resolution["not_found"])

        for account_id, account_assets in by_account.items():
            account = accounts.get(account_id)
            if account is None:
                logger.warning("YNAB account %s not found, skipping", account_id)
                report["skipped_accounts"].append(account_id)
                continue

            result = await reconcile_account(
                ledger, token, budget_id, account,
                [{"symbol": a["symbol"], "amount": a["amount"]} for a in account_assets],
                quotes_by_currency[account["currency"]],
                on=on,
            )
            report["accounts"].append(result)

        logger.info(
            "Portfolio sync completed: %d accounts, %d symbols not found",
            len(report["accounts"]), len(report["not_found"]),
        )
    return report


async def handle_scheduled_sync(
    resolver: MarketDataResolver,
    ledger: YnabClient,
    today: Optional[date] = None,
) -> None:
    """Scheduler entry point: sync when the stored schedule says so."""
    try:
        settings = await get_settings()
        if settings is None:
            logger.info("No user settings found, skipping sync")
            return

        today = today or date.today()
        if not should_sync(settings["sync_schedule"], today):
            logger.info("Schedule %s does not sync on %s", settings["sync_schedule"], today)
            return

        await perform_sync(settings, resolver, ledger, on=today)
    except Exception:
        logger.exception("Error during scheduled sync")


async def trigger_manual_sync(
    resolver: MarketDataResolver,
    ledger: YnabClient,
) -> SyncReport:
    settings = await get_settings()
    if settings is None:
        raise SyncError("No user settings found, configure YNAB settings first")
    logger.info("Manual sync triggered")
    return await perform_sync(settings, resolver, ledger)
