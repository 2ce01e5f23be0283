"""Waterfall price resolution across an ordered list of providers.

Each provider is asked only for the symbols that no earlier provider
resolved.  A provider failing outright is logged and skipped; symbols no
provider can price come back in ``not_found`` rather than as an error.
"""

from __future__ import annotations

import logging
from typing import TypedDict

from investsync.providers.base import PriceProvider, PriceQuote, is_valid_price

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


class ResolutionResult(TypedDict):
    found: list[PriceQuote]
    not_found: list[str]


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def unique_symbols(symbols: list[str]) -> list[str]:
    """De-duplicate case-insensitively, keeping the first spelling seen."""
    seen: set[str] = set()
    unique: list[str] = []
    for symbol in symbols:
        key = symbol.upper()
        if key not in seen:
            seen.add(key)
            unique.append(symbol)
    return unique


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class MarketDataResolver:
    """Resolves symbols to prices using providers in priority order."""

    def __init__(self, providers: list[PriceProvider]) -> None:
        self._all_providers = list(providers)
        self._providers = [p for p in providers if p.is_available()]
        skipped = [p.name for p in providers if not p.is_available()]
        if skipped:
            logger.info("Providers without credentials, skipped: %s", ", ".join(skipped))
        logger.info(
            "Market data providers in priority order: %s",
            ", ".join(self.available_providers) or "(none)",
        )

    @property
    def available_providers(self) -> list[str]:
        return [p.name for p in self._providers]

    async def close(self) -> None:
        for provider in self._all_providers:
            await provider.close()

    async def resolve(
        self,
        symbols: list[str],
        target_currency: str = "USD",
        log_unresolved: bool = False,
    ) -> ResolutionResult:
        """Resolve *symbols* to prices in *target_currency*.

        With *log_unresolved*, logs per-provider counts, the unresolved
        symbols and a per-provider breakdown of what was found.
        """
        if not symbols:
            return {"found": [], "not_found": []}

        # upper-cased symbol -> requested spelling
        remaining = {s.upper(): s for s in unique_symbols(symbols)}
        total = len(remaining)
        found: list[PriceQuote] = []
        breakdown: dict[str, list[str]] = {}

        for provider in self._providers:
            if not remaining:
                break

            try:
                quotes = await provider.fetch_prices(list(remaining.values()), target_currency)
            except Exception:  # noqa: BLE001
                logger.exception("%s failed, trying next provider", provider.name)
                continue

            accepted: list[str] = []
            for quote in quotes:
                key = str(quote.get("symbol", "")).upper()
                if key not in remaining or not is_valid_price(quote.get("price")):
                    continue
                symbol = remaining.pop(key)
                found.append({
                    "symbol": symbol,
                    "price": float(quote["price"]),
                    "currency": quote.get("currency") or target_currency.upper(),
                })
                accepted.append(symbol)

            if accepted:
                breakdown[provider.name] = accepted
            if log_unresolved:
                logger.info(
                    "%s found %d symbols, %d remaining",
                    provider.name, len(accepted), len(remaining),
                )

        not_found = list(remaining.values())
        if log_unresolved:
            self._log_details(found, not_found, total, breakdown)

        return {"found": found, "not_found": not_found}

    @staticmethod
    def _log_details(
        found: list[PriceQuote],
        not_found: list[str],
        total: int,
        breakdown: dict[str, list[str]],
    ) -> None:
        if not_found:
            logger.warning(
                "Could not resolve %d symbols from any provider: %s",
                len(not_found), ", ".join(not_found),
            )
        logger.info("Resolved %d/%d symbols", len(found), total)
        for name, symbols in breakdown.items():
            logger.info("  %s: %d (%s)", name, len(symbols), ", ".join(symbols))
