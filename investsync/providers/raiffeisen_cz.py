"""Raiffeisen CZ provider: scrapes the broker's public product pages by ISIN.

Each ISIN is tried as a stock, then a fund, then an RCB certificate; the
first page that yields a positive price wins.  Page parsing is kept in pure
functions so it can be tested against saved HTML.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import NamedTuple

import httpx
from bs4 import BeautifulSoup

from investsync.providers.base import PriceProvider, PriceQuote, is_valid_price
from investsync.services.currency import CurrencyConverter

logger = logging.getLogger(__name__)

_BASE_URL = "https://investice.rb.cz/en/produkt"

_NUMBER_RE = re.compile(r"-?[\d\s., ]*\d")


@dataclass(frozen=True)
class PageLayout:
    """Where the price and currency live on one kind of product page."""

    path: str
    label_class: str
    value_class: str
    price_label: str
    currency_label: str


class PageQuote(NamedTuple):
    price: float
    currency: str | None


STOCK_PAGE = PageLayout("stock", "striped-list-label", "striped-list-value", "Quote", "Currency")
FUND_PAGE = PageLayout("fund", "top-info-label", "top-info-value", "Price", "Currency")
CERTIFICATE_PAGE = PageLayout(
    "certificate-rcb",
    "striped-list-label",
    "striped-list-value",
    "Denomination / nominal",
    "Product currency",
)


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------


def parse_number(text: str | None) -> float | None:
    """Parse a formatted number such as ``"1,234.56 CZK"`` or ``"1 234,56"``.

    With both ``.`` and ``,`` present the right-most one is the decimal
    separator.  A separator repeated, or a lone ``,`` followed by exactly
    three digits, groups thousands.  A lone ``.`` is always a decimal point.
    """
    if not text:
        return None
    match = _NUMBER_RE.search(text)
    if not match:
        return None
    raw = re.sub(r"[\s ]", "", match.group(0))

    if "." in raw and "," in raw:
        decimal_at = max(raw.rfind("."), raw.rfind(","))
    elif raw.count(".") + raw.count(",") != 1:
        decimal_at = -1
    elif "," in raw and len(raw) - raw.rfind(",") - 1 == 3:
        decimal_at = -1
    else:
        decimal_at = max(raw.rfind("."), raw.rfind(","))

    if decimal_at == -1:
        number = re.sub(r"[.,]", "", raw)
    else:
        whole = re.sub(r"[.,]", "", raw[:decimal_at])
        number = f"{whole}.{raw[decimal_at + 1:]}"

    try:
        return float(number)
    except ValueError:
        return None


def _labelled_value(soup: BeautifulSoup, label_class: str, value_class: str, label: str) -> str:
    """Text of the value element following the first label containing *label*."""
    for node in soup.find_all(class_=label_class):
        if label in node.get_text():
            value = node.find_next_sibling(class_=value_class)
            if value is not None:
                return value.get_text(strip=True)
    return ""


def parse_product_page(html: str | None, layout: PageLayout) -> PageQuote | None:
    """Extract ``(price, currency)`` from a product page, or ``None``."""
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")

    price = parse_number(
        _labelled_value(soup, layout.label_class, layout.value_class, layout.price_label)
    )
    if price is None:
        return None

    currency = _labelled_value(
        soup, layout.label_class, layout.value_class, layout.currency_label
    )
    return PageQuote(price, currency.upper() or None)


def parse_certificate_page(html: str | None) -> PageQuote | None:
    """Certificates are quoted as a percentage bid of their nominal value."""
    nominal = parse_product_page(html, CERTIFICATE_PAGE)
    if nominal is None:
        return None

    soup = BeautifulSoup(html, "html.parser")
    bid = parse_number(_labelled_value(soup, "top-info-label", "top-info-value", "Bid"))
    if bid is None:
        return None
    return PageQuote(nominal.price * bid / 100, nominal.currency)


# ---------------------------------------------------------------------------
# Provider class
# ---------------------------------------------------------------------------


class RaiffeisenCZProvider(PriceProvider):
    """Scrapes stock, fund and certificate pages in that order."""

    name = "Raiffeisen CZ"

    def __init__(
        self,
        converter: CurrencyConverter | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(converter, client, base_url=_BASE_URL)

    def is_available(self) -> bool:
        return True

    async def _fetch_page(self, path: str, symbol: str) -> str | None:
        """GET a product page; ``None`` on non-2xx or network failure."""
        try:
            resp = await self._client.get(f"/{path}/", params={"ISIN": symbol})
        except httpx.HTTPError as exc:
            logger.warning("Raiffeisen CZ %s page failed for %s: %s", path, symbol, exc)
            return None
        if resp.is_error:
            logger.debug("Raiffeisen CZ %s page for %s: HTTP %d", path, symbol, resp.status_code)
            return None
        return resp.text

    async def _find_quote(self, symbol: str) -> PageQuote | None:
        for layout in (STOCK_PAGE, FUND_PAGE, CERTIFICATE_PAGE):
            html = await self._fetch_page(layout.path, symbol)
            if layout is CERTIFICATE_PAGE:
                quote = parse_certificate_page(html)
            else:
                quote = parse_product_page(html, layout)
            if quote is not None and is_valid_price(quote.price):
                return quote
        return None

    async def fetch_prices(
        self, symbols: list[str], target_currency: str
    ) -> list[PriceQuote]:
        target = target_currency.upper()
        results: list[PriceQuote] = []

        for symbol in symbols:
            try:
                quote = await self._find_quote(symbol)
            except Exception:  # noqa: BLE001
                logger.exception("Raiffeisen CZ failed to price %s", symbol)
                continue

            if quote is None:
                logger.debug("No valid price found for %s in Raiffeisen CZ", symbol)
                continue

            price = await self.to_target_currency(quote.price, quote.currency or target, target)
            results.append({"symbol": symbol, "price": price, "currency": target})

        return results
