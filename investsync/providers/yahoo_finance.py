"""Yahoo Finance provider (via yfinance) for stocks, ETFs and indices."""

from __future__ import annotations

import asyncio
import logging

import yfinance as yf

from investsync.config import HTTP_TIMEOUT_SECONDS
from investsync.providers.base import PriceProvider, PriceQuote, is_valid_price
from investsync.services.currency import CurrencyConverter

logger = logging.getLogger(__name__)

# Yahoo quotes some exchanges in minor units (e.g. LSE in pence).
_MINOR_UNIT_CURRENCIES: dict[str, tuple[str, float]] = {
    "GBp": ("GBP", 100.0),
    "GBX": ("GBP", 100.0),
    "ZAc": ("ZAR", 100.0),
    "ILA": ("ILS", 100.0),
}


def _normalize_currency(price: float, currency: str) -> tuple[float, str]:
    """Return ``(price, currency)`` in major units."""
    if currency in _MINOR_UNIT_CURRENCIES:
        major, divisor = _MINOR_UNIT_CURRENCIES[currency]
        return price / divisor, major
    return price, currency.upper()


def _lookup_quote(symbol: str) -> tuple[float | None, str | None]:
    """Blocking yfinance lookup: ``(last_price, currency)``."""
    info = yf.Ticker(symbol).fast_info
    price = getattr(info, "last_price", None)
    currency = getattr(info, "currency", None)
    return price, currency


class YahooFinanceProvider(PriceProvider):
    """Per-symbol quotes in the listing's native currency, then converted."""

    name = "YahooFinance"

    def __init__(
        self,
        converter: CurrencyConverter | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ) -> None:
        # yfinance manages its own HTTP session, so no httpx client is opened.
        self._converter = converter or CurrencyConverter()
        self._timeout = timeout

    async def close(self) -> None:
        pass

    def is_available(self) -> bool:
        # Public quotes need no API key.
        return True

    async def _quote(self, symbol: str) -> tuple[float | None, str | None]:
        return await asyncio.wait_for(
            asyncio.to_thread(_lookup_quote, symbol), timeout=self._timeout,
        )

    async def fetch_prices(
        self, symbols: list[str], target_currency: str
    ) -> list[PriceQuote]:
        if not symbols:
            return []

        logger.info("YahooFinance fetching %d symbols", len(symbols))
        target = target_currency.upper()
        results: list[PriceQuote] = []

        for symbol in symbols:
            try:
                price, native = await self._quote(symbol)
            except Exception as exc:  # noqa: BLE001
                logger.warning("YahooFinance lookup failed for %s: %s", symbol, exc)
                continue

            if not is_valid_price(price):
                logger.debug("YahooFinance has no price for %s", symbol)
                continue

            price, native = _normalize_currency(float(price), native or target)
            price = await self.to_target_currency(price, native, target)
            results.append({"symbol": symbol, "price": price, "currency": target})

        return results
