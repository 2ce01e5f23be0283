"""Balance reconciliation: holdings x prices vs. the ledger balance."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import TypedDict

from investsync.config import RECONCILE_THRESHOLD
from investsync.providers.base import PriceQuote, is_valid_price

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


class Holding(TypedDict):
    symbol: str
    amount: float


class ReconciliationResult(TypedDict):
    account_id: str
    current_balance: float
    target_balance: float
    adjustment: float
    contributing_symbols: list[str]


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------


def compute_adjustment(
    account_id: str,
    holdings: Iterable[Holding],
    quotes: Mapping[str, PriceQuote],
    current_balance: float,
) -> ReconciliationResult:
    """Target balance is the sum of ``amount * price`` over priced holdings.

    *quotes* is looked up case-insensitively.  Holdings without a positive
    quote contribute nothing.
    """
    by_symbol = {symbol.upper(): quote for symbol, quote in quotes.items()}
    target = 0.0
    contributing: list[str] = []

    for holding in holdings:
        quote = by_symbol.get(holding["symbol"].upper())
        if quote is None or not is_valid_price(quote.get("price")):
            logger.warning("No price for %s in account %s, skipping", holding["symbol"], account_id)
            continue
        target += float(holding["amount"]) * quote["price"]
        contributing.append(holding["symbol"])

    return {
        "account_id": account_id,
        "current_balance": current_balance,
        "target_balance": target,
        "adjustment": target - current_balance,
        "contributing_symbols": contributing,
    }


def needs_transaction(result: ReconciliationResult) -> bool:
    return abs(result["adjustment"]) >= RECONCILE_THRESHOLD


def build_memo(result: ReconciliationResult) -> str:
    """``"1000.00 → 3000.00 (AAPL, MSFT)"``"""
    symbols = ", ".join(result["contributing_symbols"])
    return (
        f"{result['current_balance']:.2f} → {result['target_balance']:.2f} ({symbols})"
    )
