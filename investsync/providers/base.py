"""Abstract base class and shared helpers for price providers."""

from __future__ import annotations

import logging
import math
import re
from abc import ABC, abstractmethod
from typing import TypedDict

import httpx

from investsync.config import HTTP_TIMEOUT_SECONDS
from investsync.services.currency import CurrencyConverter

logger = logging.getLogger(__name__)

_SIMPLE_TICKER_RE = re.compile(r"^[A-Za-z0-9]+$")


class PriceQuote(TypedDict):
    """One resolved price."""

    symbol: str     # as requested by the caller
    price: float    # always > 0
    currency: str   # ISO 4217


class ProviderError(Exception):
    """Raised when a provider cannot serve a batch at all."""


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------


def is_valid_price(value: object) -> bool:
    """True for finite numbers greater than zero."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def is_simple_ticker(symbol: str) -> bool:
    """True when *symbol* is purely alphanumeric (no dots, dashes, colons)."""
    return bool(_SIMPLE_TICKER_RE.match(symbol))


def match_requested(symbol: str | None, requested: list[str]) -> str | None:
    """Map an upstream spelling back to the caller's spelling.

    Returns ``None`` when the upstream symbol was not part of the request.
    """
    if not symbol:
        return None
    wanted = symbol.upper()
    for candidate in requested:
        if candidate.upper() == wanted:
            return candidate
    return None


# ---------------------------------------------------------------------------
# Provider interface
# ---------------------------------------------------------------------------


class PriceProvider(ABC):
    """Interface that every market-data provider must implement."""

    name: str = "provider"

    def __init__(
        self,
        converter: CurrencyConverter | None = None,
        client: httpx.AsyncClient | None = None,
        base_url: str = "",
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self._converter = converter or CurrencyConverter()
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._timeout = timeout

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    @abstractmethod
    def is_available(self) -> bool:
        """Whether required credentials are configured.  Must not do I/O."""

    @abstractmethod
    async def fetch_prices(
        self, symbols: list[str], target_currency: str
    ) -> list[PriceQuote]:
        """Fetch prices for *symbols* in *target_currency*.

        Returns only quotes for requested symbols with a positive price.
        Raises on total failure; a partial list is a normal result.
        """

    async def to_target_currency(
        self, price: float, native_currency: str, target_currency: str
    ) -> float:
        """Convert *price*; the converter falls back to *price* on failure."""
        if native_currency.upper() == target_currency.upper():
            return price
        return await self._converter.convert(
            price, native_currency, target_currency, self._timeout,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"
