"""Holdings-file sync: mirror a remote YAML portfolio into YNAB.

The file looks like::

    budget: <budget id>
    schedule:              # optional, informational
      sync_time: "9pm"
      sync_frequency: weekly
    accounts:
      - account_id: <ynab account id>
        holdings:
          AAPL: 10
          BTC: 0.5

The file is refetched daily; a sync runs at most once per
``FILE_SYNC_MIN_INTERVAL_HOURS`` unless triggered manually.
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional

import httpx
import yaml

from investsync import config
from investsync.assets import replace_account_assets
from investsync.jobs.sync import AccountSyncResult, reconcile_account, sync_lock
from investsync.services.market_data import MarketDataResolver
from investsync.services.ynab import LedgerError, YnabClient

logger = logging.getLogger(__name__)


class FileSyncError(Exception):
    """Raised for an unusable holdings file or missing configuration."""


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


@dataclass
class AccountHoldings:
    account_id: str
    holdings: dict[str, float]


@dataclass
class HoldingsFile:
    budget: str
    accounts: list[AccountHoldings]
    schedule: dict = field(default_factory=dict)


@dataclass
class CachedFile:
    holdings: HoldingsFile
    content_hash: str
    fetched_at: datetime
    last_sync_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def parse_holdings_file(content: str) -> HoldingsFile:
    """Parse and validate the YAML holdings file.

    Raises ``FileSyncError`` when the YAML is malformed, ``budget`` or
    ``accounts`` is missing, or a quantity is not a non-negative number.
    """
    try:
        raw = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise FileSyncError(f"Invalid YAML: {exc}") from exc

    if not isinstance(raw, dict) or not isinstance(raw.get("accounts"), list):
        raise FileSyncError("Invalid config file format: missing accounts array")
    if not raw.get("budget"):
        raise FileSyncError("Invalid config file format: missing budget")

    accounts: list[AccountHoldings] = []
    for entry in raw["accounts"]:
        if not isinstance(entry, dict) or not entry.get("account_id"):
            raise FileSyncError("Invalid config file format: account without account_id")
        holdings: dict[str, float] = {}
        for symbol, quantity in (entry.get("holdings") or {}).items():
            if isinstance(quantity, bool) or not isinstance(quantity, (int, float)) or quantity < 0:
                raise FileSyncError(f"Invalid quantity for {symbol}: {quantity!r}")
            holdings[str(symbol)] = float(quantity)
        accounts.append(AccountHoldings(str(entry["account_id"]), holdings))

    schedule = raw.get("schedule") if isinstance(raw.get("schedule"), dict) else {}
    return HoldingsFile(budget=str(raw["budget"]), accounts=accounts, schedule=schedule)


def parse_time_to_hour(text: str) -> Optional[int]:
    """``"9pm"`` -> 21, ``"9 am"`` -> 9, ``"21:00"`` -> 21; ``None`` if unparseable."""
    cleaned = text.strip().lower()
    match = re.fullmatch(r"(\d{1,2})(?::\d{2})?\s*(am|pm)?", cleaned)
    if not match:
        return None
    hour, meridiem = int(match.group(1)), match.group(2)
    if meridiem == "pm":
        hour = 12 if hour == 12 else hour + 12
    elif meridiem == "am":
        hour = 0 if hour == 12 else hour
    return hour if 0 <= hour <= 23 else None


def schedule_to_cron(sync_time: str, frequency: str) -> Optional[str]:
    hour = parse_time_to_hour(sync_time)
    if hour is None:
        return None
    if frequency == "daily":
        return f"0 {hour} * * *"
    if frequency == "monthly":
        return f"0 {hour} 1 * *"
    if frequency != "weekly":
        logger.warning("Unknown sync frequency %r, defaulting to weekly", frequency)
    return f"0 {hour} * * 0"


def is_safe_cron(expression: str) -> bool:
    """Reject expressions that could fire every minute or every hour."""
    parts = expression.split()
    if not 5 <= len(parts) <= 6:
        return False
    return parts[0] != "*" and parts[1] != "*"


def describe_schedule(schedule: dict) -> str:
    cron = schedule.get("cron")
    if not cron and schedule.get("sync_time") and schedule.get("sync_frequency"):
        cron = schedule_to_cron(str(schedule["sync_time"]), str(schedule["sync_frequency"]))
    if not cron:
        return "default daily check"
    if not is_safe_cron(cron):
        return f"rejected {cron!r} (too frequent), default daily check"
    return f"{cron} ({schedule.get('timezone', 'UTC')})"


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class FileSyncService:
    """Fetches the holdings file, caches it and reconciles its accounts."""

    def __init__(
        self,
        resolver: MarketDataResolver,
        ledger: YnabClient,
        client: httpx.AsyncClient | None = None,
        url: str | None = None,
        token: str | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._resolver = resolver
        self._ledger = ledger
        self._client = client or httpx.AsyncClient(
            timeout=config.HTTP_TIMEOUT_SECONDS, follow_redirects=True,
        )
        self._url = config.INVESTMENTS_CONFIG_FILE_URL if url is None else url
        self._token = config.YNAB_API_KEY if token is None else token
        self._clock = clock
        self.cached: Optional[CachedFile] = None

    async def close(self) -> None:
        await self._client.aclose()

    async def _download(self) -> str:
        resp = await self._client.get(
            self._url,
            params={"_t": int(time.time() * 1000)},
            headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
        )
        resp.raise_for_status()
        return resp.text

    async def fetch_config(self) -> bool:
        """Refresh the cached holdings file.

        Returns ``True`` when the content is new or changed.  A missing URL,
        download failure or invalid file keeps the previous cache.
        """
        if not self._url:
            logger.warning("INVESTMENTS_CONFIG_FILE_URL not configured, skipping config fetch")
            return False

        try:
            content = await self._download()
            holdings = parse_holdings_file(content)
        except (httpx.HTTPError, FileSyncError) as exc:
            logger.error("Failed to refresh holdings file: %s", exc)
            return False

        digest = content_hash(content)
        changed = self.cached is None or self.cached.content_hash != digest
        self.cached = CachedFile(
            holdings=holdings,
            content_hash=digest,
            fetched_at=self._clock(),
            last_sync_at=self.cached.last_sync_at if self.cached else None,
        )
        logger.info(
            "Holdings file cached: %d accounts, changed=%s, schedule: %s",
            len(holdings.accounts), changed, describe_schedule(holdings.schedule),
        )
        return changed

    async def perform_sync(self, on: Optional[date] = None) -> list[AccountSyncResult]:
        """Mirror and reconcile every account in the cached file.

        A failing account is logged and the rest continue.  Ledger write
        failures are re-raised as one ``LedgerError`` once every account has
        been tried, and the run does not count towards the minimum interval.
        """
        if self.cached is None:
            raise FileSyncError("No cached holdings file available for sync")
        if not self._token:
            raise FileSyncError("YNAB_API_KEY not configured")

        holdings_file = self.cached.holdings
        results: list[AccountSyncResult] = []

        async with sync_lock:
            logger.info(
                "Starting file sync for budget %s (%d accounts)",
                holdings_file.budget, len(holdings_file.accounts),
            )
            accounts = {
                a["id"]: a
                for a in await self._ledger.list_accounts(self._token, holdings_file.budget)
            }

            ledger_failures: list[tuple[str, LedgerError]] = []
            for entry in holdings_file.accounts:
                account = accounts.get(entry.account_id)
                if account is None:
                    logger.warning("YNAB account %s not found, skipping", entry.account_id)
                    continue
                try:
                    await replace_account_assets(entry.account_id, entry.holdings)
                    resolution = await self._resolver.resolve(
                        list(entry.holdings), account["currency"], log_unresolved=True,
                    )
                    quotes = {q["symbol"].upper(): q for q in resolution["found"]}
                    results.append(await reconcile_account(
                        self._ledger, self._token, holdings_file.budget, account,
                        [{"symbol": s, "amount": q} for s, q in entry.holdings.items()],
                        quotes,
                        on=on,
                    ))
                except LedgerError as exc:
                    logger.error("Ledger write failed for account %s: %s", entry.account_id, exc)
                    ledger_failures.append((entry.account_id, exc))
                except Exception:  # noqa: BLE001
                    logger.exception("Failed to sync account %s", entry.account_id)

            if ledger_failures:
                failed = ", ".join(account_id for account_id, _ in ledger_failures)
                raise LedgerError(
                    f"Failed to post adjustments for accounts: {failed}"
                ) from ledger_failures[0][1]

            self.cached.last_sync_at = self._clock()
            logger.info("File sync completed: %d/%d accounts", len(results), len(holdings_file.accounts))
        return results

    async def handle_scheduled_sync(self) -> None:
        """Daily job: refresh the file, then sync if the minimum gap has passed."""
        try:
            await self.fetch_config()
            if self.cached is None:
                logger.warning("No cached holdings file for scheduled sync")
                return

            last = self.cached.last_sync_at
            if last is not None:
                hours = (self._clock() - last).total_seconds() / 3600
                if hours < config.FILE_SYNC_MIN_INTERVAL_HOURS:
                    logger.info("Skipping file sync, last sync was %.1f hours ago", hours)
                    return

            await self.perform_sync()
        except Exception:
            logger.exception("Error during scheduled file sync")

    async def trigger_manual_sync(self) -> list[AccountSyncResult]:
        logger.info("Manual file sync triggered")
        await self.fetch_config()
        return await self.perform_sync()
