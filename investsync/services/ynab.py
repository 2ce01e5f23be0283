"""YNAB ledger client.

YNAB stores amounts as integer milliunits; this module converts at the
boundary so callers only ever see major units.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TypedDict

import httpx

from investsync.config import (
    HTTP_TIMEOUT_SECONDS,
    LEDGER_MINOR_UNITS,
    RECONCILE_PAYEE,
    YNAB_BASE_URL,
)

logger = logging.getLogger(__name__)

_DEFAULT_CURRENCY = "USD"


class LedgerError(Exception):
    """Raised when a YNAB request fails or returns an unusable body."""


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


class LedgerBudget(TypedDict):
    id: str
    name: str
    currency: str


class LedgerAccount(TypedDict):
    id: str
    name: str
    type: str
    balance: float   # major units
    currency: str


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def to_milliunits(amount: float) -> int:
    return round(amount * LEDGER_MINOR_UNITS)


def from_milliunits(amount: int) -> float:
    return amount / LEDGER_MINOR_UNITS


def _budget_currency(budget: dict) -> str:
    return (budget.get("currency_format") or {}).get("iso_code") or _DEFAULT_CURRENCY


def _parse_account(raw: dict, currency: str) -> LedgerAccount:
    return {
        "id": raw["id"],
        "name": raw.get("name", ""),
        "type": raw.get("type", ""),
        "balance": from_milliunits(raw.get("balance", 0)),
        "currency": currency,
    }


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class YnabClient:
    """Thin async wrapper over the YNAB REST API."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=YNAB_BASE_URL, timeout=HTTP_TIMEOUT_SECONDS,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self, method: str, endpoint: str, token: str, payload: dict | None = None,
    ) -> dict:
        """Send an authenticated request and return the ``data`` object."""
        try:
            resp = await self._client.request(
                method,
                endpoint,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
            resp.raise_for_status()
            return resp.json()["data"]
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.error("YNAB %s %s failed: %s", method, endpoint, exc)
            raise LedgerError(f"YNAB {method} {endpoint} failed: {exc}") from exc

    async def list_budgets(self, token: str) -> list[LedgerBudget]:
        data = await self._request("GET", "/budgets", token)
        return [
            {"id": b["id"], "name": b.get("name", ""), "currency": _budget_currency(b)}
            for b in data.get("budgets", [])
        ]

    async def get_budget_currency(self, token: str, budget_id: str) -> str:
        data = await self._request("GET", f"/budgets/{budget_id}", token)
        return _budget_currency(data.get("budget") or {})

    async def _resolve_budget(self, token: str, budget_id: str | None) -> tuple[str, str]:
        """``(budget_id, currency)``, falling back to the first budget."""
        if budget_id:
            return budget_id, await self.get_budget_currency(token, budget_id)

        budgets = await self.list_budgets(token)
        if not budgets:
            raise LedgerError("No budgets found in YNAB account")
        return budgets[0]["id"], budgets[0]["currency"]

    async def list_accounts(
        self, token: str, budget_id: str | None = None,
    ) -> list[LedgerAccount]:
        budget_id, currency = await self._resolve_budget(token, budget_id)
        data = await self._request("GET", f"/budgets/{budget_id}/accounts", token)
        return [_parse_account(a, currency) for a in data.get("accounts", [])]

    async def get_account(
        self, token: str, budget_id: str | None, account_id: str,
    ) -> LedgerAccount:
        budget_id, currency = await self._resolve_budget(token, budget_id)
        data = await self._request(
            "GET", f"/budgets/{budget_id}/accounts/{account_id}", token,
        )
        return _parse_account(data["account"], currency)

    async def append_adjustment_transaction(
        self,
        token: str,
        budget_id: str | None,
        account_id: str,
        amount: float,
        memo: str,
        on: date | None = None,
    ) -> None:
        """Post a cleared, approved transaction of *amount* (major units)."""
        budget_id, _ = await self._resolve_budget(token, budget_id)
        transaction = {
            "account_id": account_id,
            "amount": to_milliunits(amount),
            "payee_name": RECONCILE_PAYEE,
            "memo": memo,
            "cleared": "cleared",
            "approved": True,
            "date": (on or date.today()).isoformat(),
        }
        await self._request(
            "POST", f"/budgets/{budget_id}/transactions", token,
            payload={"transaction": transaction},
        )
        logger.info("Posted %.2f adjustment to account %s: %s", amount, account_id, memo)
