"""Alpha Vantage provider (GLOBAL_QUOTE, one symbol per request)."""

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

_BASE_URL = "https://www.alphavantage.co"
_NATIVE_CURRENCY = "USD"

# Keys Alpha Vantage uses to signal a throttled or exhausted API key.
_THROTTLE_KEYS = ("Note", "Information")


class _Throttled(Exception):
    """Alpha Vantage refused the request because of call frequency."""


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------


def _parse_global_quote(raw: object) -> float | None:
    """Price from a GLOBAL_QUOTE payload.

    Raises ``_Throttled`` when the payload carries a rate-limit notice.
    """
    if not isinstance(raw, dict):
        return None
    for key in _THROTTLE_KEYS:
        if key in raw:
            raise _Throttled(str(raw[key])[:200])
    if "Error Message" in raw:
        return None

    quote = raw.get("Global Quote")
    if not isinstance(quote, dict):
        return None
    try:
        price = float(quote.get("05. price", ""))
    except (TypeError, ValueError):
        return None
    return price if is_valid_price(price) else None


# ---------------------------------------------------------------------------
# Provider class
# ---------------------------------------------------------------------------


class AlphaVantageProvider(PriceProvider):
    """Five requests per minute; stops early when the key is throttled."""

    name = "AlphaVantage"

    def __init__(
        self,
        converter: CurrencyConverter | None = None,
        client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(converter, client, base_url=_BASE_URL)
        self._api_key = config.ALPHA_VANTAGE_API_KEY if api_key is None else api_key
        limit, window = config.PROVIDER_RATE_LIMITS["alpha_vantage"]
        self.limiter = limiter or RateLimiter(self.name, limit, window)

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def fetch_prices(
        self, symbols: list[str], target_currency: str
    ) -> list[PriceQuote]:
        if not symbols:
            return []
        if not self._api_key:
            raise ProviderError("Alpha Vantage API key not configured")

        logger.info("AlphaVantage fetching %d symbols", len(symbols))
        target = target_currency.upper()
        results: list[PriceQuote] = []

        for symbol in symbols:
            await self.limiter.acquire()
            try:
                resp = await self._client.get(
                    "/query",
                    params={
                        "function": "GLOBAL_QUOTE",
                        "symbol": symbol,
                        "apikey": self._api_key,
                    },
                )
                if resp.is_error:
                    logger.debug("AlphaVantage %s: HTTP %d", symbol, resp.status_code)
                    continue
                price = _parse_global_quote(resp.json())
            except _Throttled as exc:
                logger.warning("AlphaVantage rate limit hit, returning partial results: %s", exc)
                break
            except (httpx.HTTPError, ValueError) as exc:
                logger.debug("AlphaVantage request error for %s: %s", symbol, exc)
                continue

            if price is None:
                logger.debug("No valid price data for %s in AlphaVantage", symbol)
                continue

            price = await self.to_target_currency(price, _NATIVE_CURRENCY, target)
            results.append({"symbol": symbol, "price": price, "currency": target})

        return results
