"""Finnhub provider: direct quotes, with symbol search for ISINs and odd tickers."""

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

_BASE_URL = "https://finnhub.io/api/v1"
_NATIVE_CURRENCY = "USD"


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------


def _parse_quote(raw: object) -> float | None:
    """``/quote`` returns ``{"c": current, "pc": previous close, ...}``."""
    if not isinstance(raw, dict):
        return None
    price = raw.get("c")
    return float(price) if is_valid_price(price) else None


def _pick_search_match(raw: object, query: str) -> str | None:
    """Choose the listed ticker for *query* from a ``/search`` response.

    Prefers an exact ``displaySymbol`` match; otherwise the first result.
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("result"), list):
        return None
    results = [r for r in raw["result"] if isinstance(r, dict) and r.get("symbol")]
    if not results:
        return None
    for item in results:
        if str(item.get("displaySymbol", "")).upper() == query.upper():
            return str(item["symbol"])
    return str(results[0]["symbol"])


# ---------------------------------------------------------------------------
# Provider class
# ---------------------------------------------------------------------------


class FinnhubProvider(PriceProvider):
    """Per-symbol quotes under a 60 requests/minute budget."""

    name = "Finnhub"

    def __init__(
        self,
        converter: CurrencyConverter | None = None,
        client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(converter, client, base_url=_BASE_URL)
        self._api_key = config.FINNHUB_API_KEY if api_key is None else api_key
        limit, window = config.PROVIDER_RATE_LIMITS["finnhub"]
        self.limiter = limiter or RateLimiter(self.name, limit, window)

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def _get(self, endpoint: str, params: dict) -> object | None:
        """Rate-limited GET; ``None`` on non-2xx."""
        await self.limiter.acquire()
        resp = await self._client.get(endpoint, params={**params, "token": self._api_key})
        if resp.is_error:
            logger.debug("Finnhub %s %s: HTTP %d", endpoint, params, resp.status_code)
            return None
        return resp.json()

    async def _price_for(self, symbol: str) -> float | None:
        price = _parse_quote(await self._get("/quote", {"symbol": symbol}))
        if price is not None:
            return price

        listed = _pick_search_match(await self._get("/search", {"q": symbol}), symbol)
        if listed is None or listed.upper() == symbol.upper():
            return None
        logger.debug("Finnhub resolved %s to %s", symbol, listed)
        return _parse_quote(await self._get("/quote", {"symbol": listed}))

    async def fetch_prices(
        self, symbols: list[str], target_currency: str
    ) -> list[PriceQuote]:
        if not symbols:
            return []
        if not self._api_key:
            raise ProviderError("Finnhub API key not configured")

        logger.info("Finnhub fetching %d symbols", len(symbols))
        target = target_currency.upper()
        results: list[PriceQuote] = []

        for symbol in symbols:
            try:
                price = await self._price_for(symbol)
            except (httpx.HTTPError, ValueError) as exc:
                logger.debug("Finnhub request error for %s: %s", symbol, exc)
                continue

            if price is None:
                logger.debug("No valid price data for %s in Finnhub", symbol)
                continue

            price = await self.to_target_currency(price, _NATIVE_CURRENCY, target)
            results.append({"symbol": symbol, "price": price, "currency": target})

        return results
