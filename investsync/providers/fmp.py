"""Financial Modeling Prep provider: batch stocks, then ETFs, then indices.

The free tier is a hard daily cap, so once the budget is spent the provider
returns whatever it has instead of waiting for the window to roll over.
"""

from __future__ import annotations

import logging

import httpx

from investsync import config
from investsync.providers.base import (
    PriceProvider,
    PriceQuote,
    ProviderError,
    is_valid_price,
    match_requested,
)
from investsync.services.currency import CurrencyConverter
from investsync.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

_BASE_URL = "https://financialmodelingprep.com/api/v3"
_NATIVE_CURRENCY = "USD"

# European index shorthands -> FMP index tickers
INDEX_ALIASES: dict[str, str] = {
    "DAX": "^GDAXI",
    "FTSE": "^FTSE",
    "CAC": "^FCHI",
    "IBEX": "^IBEX",
    "AEX": "^AEX",
    "SMI": "^SSMI",
    "STOXX50": "^SX5E",
    "STOXX600": "^STOXX",
}


def _priced_rows(raw: object) -> list[dict]:
    """Rows of a ``/quote`` response that carry a positive price."""
    if not isinstance(raw, list):
        return []
    return [r for r in raw if isinstance(r, dict) and is_valid_price(r.get("price"))]


class FMPProvider(PriceProvider):

    name = "Financial Modeling Prep"

    def __init__(
        self,
        converter: CurrencyConverter | None = None,
        client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(converter, client, base_url=_BASE_URL)
        self._api_key = config.FMP_API_KEY if api_key is None else api_key
        limit, window = config.PROVIDER_RATE_LIMITS["fmp"]
        self.limiter = limiter or RateLimiter(self.name, limit, window)

    def is_available(self) -> bool:
        return bool(self._api_key)

    def _take_budget(self, stage: str) -> bool:
        if self.limiter.is_exhausted():
            logger.warning("FMP daily API limit reached during %s fetch", stage)
            return False
        self.limiter.record_call()
        return True

    async def _quote(self, tickers: str) -> list[dict]:
        try:
            resp = await self._client.get(
                f"/quote/{tickers}", params={"apikey": self._api_key},
            )
            if resp.is_error:
                logger.debug("FMP quote %s: HTTP %d", tickers, resp.status_code)
                return []
            return _priced_rows(resp.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("FMP request error for %s: %s", tickers, exc)
            return []

    async def fetch_prices(
        self, symbols: list[str], target_currency: str
    ) -> list[PriceQuote]:
        if not symbols:
            return []
        if not self._api_key:
            raise ProviderError("Financial Modeling Prep API key not configured")

        logger.info("FMP fetching %d symbols", len(symbols))
        prices: dict[str, float] = {}

        # Stocks: one batch request
        if self._take_budget("stock"):
            for row in await self._quote(",".join(symbols)):
                symbol = match_requested(row.get("symbol"), symbols)
                if symbol is not None and symbol not in prices:
                    prices[symbol] = float(row["price"])

        # ETFs: one request each
        for symbol in [s for s in symbols if s not in prices]:
            if not self._take_budget("ETF"):
                break
            rows = await self._quote(symbol)
            if rows:
                prices[symbol] = float(rows[0]["price"])

        # Indices, with European shorthands mapped
        for symbol in [s for s in symbols if s not in prices]:
            if not self._take_budget("index"):
                break
            rows = await self._quote(INDEX_ALIASES.get(symbol.upper(), symbol))
            if rows:
                prices[symbol] = float(rows[0]["price"])

        target = target_currency.upper()
        results: list[PriceQuote] = []
        for symbol in symbols:
            if symbol not in prices:
                continue
            price = await self.to_target_currency(prices[symbol], _NATIVE_CURRENCY, target)
            results.append({"symbol": symbol, "price": price, "currency": target})
        return results
