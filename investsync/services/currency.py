"""Currency conversion backed by exchangerate-api.com with a TTL rate cache.

One lookup returns the rates from a base currency to every other currency,
so the cache is keyed by the base (``from``) currency only.  Conversion
never raises: on any failure the original amount is returned.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from investsync.config import (
    CURRENCY_CACHE_TTL_SECONDS,
    EXCHANGE_RATE_BASE_URL,
    HTTP_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


class CurrencyError(Exception):
    """Raised internally when a rate table cannot be used."""


@dataclass
class RateTable:
    """All rates from one base currency, as fetched at ``fetched_at``."""

    base: str
    rates: dict[str, float]
    fetched_at: float


class RateCache:
    """In-memory rate tables keyed by base currency."""

    def __init__(
        self,
        ttl_seconds: float = CURRENCY_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._tables: dict[str, RateTable] = {}

    def is_fresh(self, table: RateTable) -> bool:
        return self._clock() - table.fetched_at < self.ttl_seconds

    def get(self, base: str) -> RateTable | None:
        """Return the table for *base* if it is still within its TTL."""
        table = self._tables.get(base)
        if table is None or not self.is_fresh(table):
            return None
        return table

    def put(self, base: str, rates: dict[str, float]) -> RateTable:
        table = RateTable(base=base, rates=rates, fetched_at=self._clock())
        self._tables[base] = table
        return table


def _parse_rates(raw: object) -> dict[str, float]:
    """Extract ``{CODE: rate}`` from an exchangerate-api response body."""
    if not isinstance(raw, dict) or not isinstance(raw.get("rates"), dict):
        raise CurrencyError("response has no rates table")
    rates: dict[str, float] = {}
    for code, value in raw["rates"].items():
        try:
            rates[str(code).upper()] = float(value)
        except (TypeError, ValueError):
            continue
    return rates


class CurrencyConverter:
    """Converts amounts between ISO 4217 currencies."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        cache: RateCache | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=EXCHANGE_RATE_BASE_URL,
            timeout=timeout,
        )
        self.cache = cache or RateCache()
        self._timeout = timeout

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _fetch_rates(self, base: str, timeout: float) -> dict[str, float]:
        resp = await self._client.get(f"/{base}", timeout=timeout)
        if resp.status_code == 404:
            raise CurrencyError(f"currency not found: {base}")
        resp.raise_for_status()
        return _parse_rates(resp.json())

    async def convert(
        self,
        amount: float,
        from_currency: str,
        to_currency: str,
        timeout: float | None = None,
    ) -> float:
        """Convert *amount*; returns the unconverted amount on any failure."""
        src = from_currency.upper()
        dst = to_currency.upper()

        if src == dst:
            return amount

        cached = self.cache.get(src)
        if cached is not None and dst in cached.rates:
            rate = cached.rates[dst]
            logger.debug("[cache] %s %s -> %s (rate %s)", amount, src, dst, rate)
            return amount * rate

        try:
            rates = await self._fetch_rates(src, timeout or self._timeout)
            if dst not in rates:
                raise CurrencyError(f"no rate from {src} to {dst}")
        except (httpx.HTTPError, CurrencyError, ValueError) as exc:
            logger.error(
                "Failed to convert %s %s to %s, returning original amount: %s",
                amount, src, dst, exc,
            )
            return amount

        # Only tables that carry the requested rate are cached.
        table = self.cache.put(src, rates)
        rate = table.rates[dst]
        converted = amount * rate
        logger.debug("Converted %s %s to %s %s (rate %s)", amount, src, converted, dst, rate)
        return converted
