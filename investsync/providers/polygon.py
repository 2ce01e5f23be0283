"""Polygon.io provider: previous-day close for stocks, then indices."""

from __future__ import annotations

import logging

import httpx

from investsync import config
from investsync.providers.base import (
    PriceProvider,
    PriceQuote,
    ProviderError,
    is_valid_price,
)
from investsync.services.currency import CurrencyConverter
from investsync.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

_BASE_URL = "https://api.polygon.io"
_NATIVE_CURRENCY = "USD"
_INDEX_PREFIX = "I:"


def _parse_prev_close(raw: object) -> float | None:
    """Close price from ``/v2/aggs/ticker/{ticker}/prev``."""
    if not isinstance(raw, dict):
        return None
    bars = raw.get("results")
    if not isinstance(bars, list) or not bars or not isinstance(bars[0], dict):
        return None
    close = bars[0].get("c")
    return float(close) if is_valid_price(close) else None


class PolygonProvider(PriceProvider):
    """Stocks first; symbols still missing are retried as ``I:``-prefixed indices."""

    name = "Polygon"

    def __init__(
        self,
        converter: CurrencyConverter | None = None,
        client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(converter, client, base_url=_BASE_URL)
        self._api_key = config.POLYGON_API_KEY if api_key is None else api_key
        limit, window = config.PROVIDER_RATE_LIMITS["polygon"]
        self.limiter = limiter or RateLimiter(self.name, limit, window)

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def _prev_close(self, ticker: str) -> float | None:
        await self.limiter.acquire()
        try:
            resp = await self._client.get(
                f"/v2/aggs/ticker/{ticker}/prev",
                params={"adjusted": "true", "apiKey": self._api_key},
            )
            if resp.is_error:
                logger.debug("Polygon %s: HTTP %d", ticker, resp.status_code)
                return None
            return _parse_prev_close(resp.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Polygon request error for %s: %s", ticker, exc)
            return None

    async def fetch_prices(
        self, symbols: list[str], target_currency: str
    ) -> list[PriceQuote]:
        if not symbols:
            return []
        if not self._api_key:
            raise ProviderError("Polygon API key not configured")

        logger.info("Polygon fetching %d symbols", len(symbols))
        target = target_currency.upper()
        prices: dict[str, float] = {}

        for symbol in symbols:
            price = await self._prev_close(symbol.upper())
            if price is not None:
                prices[symbol] = price

        missing = [s for s in symbols if s not in prices]
        if missing:
            logger.debug("Polygon retrying %d symbols as indices", len(missing))
        for symbol in missing:
            price = await self._prev_close(f"{_INDEX_PREFIX}{symbol.upper()}")
            if price is not None:
                prices[symbol] = price

        results: list[PriceQuote] = []
        for symbol in symbols:
            if symbol not in prices:
                continue
            price = await self.to_target_currency(prices[symbol], _NATIVE_CURRENCY, target)
            results.append({"symbol": symbol, "price": price, "currency": target})
        return results
