"""CoinMarketCap provider for crypto assets."""

from __future__ import annotations

import logging

import httpx

from investsync import config
from investsync.providers.base import (
    PriceProvider,
    PriceQuote,
    ProviderError,
    is_simple_ticker,
    is_valid_price,
    match_requested,
)
from investsync.services.currency import CurrencyConverter

logger = logging.getLogger(__name__)

_BASE_URL = "https://pro-api.coinmarketcap.com"


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------


def _parse_quotes(raw: dict, requested: list[str], currency: str) -> list[PriceQuote]:
    """Parse a v2 ``quotes/latest`` response.

    ``data`` maps each symbol to a list of matching assets; the first one is
    the primary listing.  Inactive assets are skipped even when priced.
    """
    results: list[PriceQuote] = []
    data = raw.get("data") or {}

    for key, assets in data.items():
        if not isinstance(assets, list) or not assets:
            continue
        asset = assets[0]

        if asset.get("is_active") != 1:
            logger.debug("CoinMarketCap asset %s is inactive", asset.get("symbol", key))
            continue

        symbol = match_requested(asset.get("symbol") or key, requested)
        if symbol is None:
            continue

        price = ((asset.get("quote") or {}).get(currency) or {}).get("price")
        if not is_valid_price(price):
            continue

        results.append({"symbol": symbol, "price": float(price), "currency": currency})

    return results


# ---------------------------------------------------------------------------
# Provider class
# ---------------------------------------------------------------------------


class CoinMarketCapProvider(PriceProvider):
    """Batch crypto quotes, converted upstream into the target currency."""

    name = "CoinMarketCap"

    def __init__(
        self,
        converter: CurrencyConverter | None = None,
        client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
    ) -> None:
        super().__init__(converter, client, base_url=_BASE_URL)
        self._api_key = config.COINMARKETCAP_API_KEY if api_key is None else api_key

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def fetch_prices(
        self, symbols: list[str], target_currency: str
    ) -> list[PriceQuote]:
        if not symbols:
            return []

        valid = [s for s in symbols if is_simple_ticker(s)]
        skipped = [s for s in symbols if not is_simple_ticker(s)]
        if skipped:
            logger.debug("CoinMarketCap skipping non-alphanumeric symbols: %s", skipped)
        if not valid:
            return []

        if not self._api_key:
            raise ProviderError("CoinMarketCap API key not configured")

        currency = target_currency.upper()
        logger.info("CoinMarketCap fetching %d symbols in %s", len(valid), currency)

        resp = await self._client.get(
            "/v2/cryptocurrency/quotes/latest",
            params={"symbol": ",".join(valid), "convert": currency},
            headers={"X-CMC_PRO_API_KEY": self._api_key, "Accept": "application/json"},
        )
        if resp.is_error:
            raise ProviderError(
                f"CoinMarketCap API error {resp.status_code}: {resp.text[:200]}"
            )

        results = _parse_quotes(resp.json(), valid, currency)
        logger.debug(
            "CoinMarketCap found %d/%d: %s",
            len(results), len(valid), [q["symbol"] for q in results],
        )
        return results
