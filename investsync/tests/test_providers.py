"""Tests for the individual price providers.

Covers:
- Shared helpers (price validation, ticker shape, requested-spelling mapping)
- CoinMarketCap: symbol filtering, inactive assets, upstream conversion, errors
- Yahoo Finance: minor-unit normalisation, conversion, per-symbol isolation
- Raiffeisen CZ: page parsing, number formats, stock -> fund -> certificate order
- Finnhub: direct quote, search fallback, rate limiter usage
- Alpha Vantage: throttle notice stops the batch, error messages skipped
- Polygon: stock then index retry
- FMP: batch, ETF and index stages, European aliases, hard daily cap
- build_providers priority order
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from investsync.providers import build_providers
from investsync.providers.alpha_vantage import AlphaVantageProvider
from investsync.providers.base import (
    ProviderError,
    is_simple_ticker,
    is_valid_price,
    match_requested,
)
from investsync.providers.coinmarketcap import CoinMarketCapProvider
from investsync.providers.finnhub import FinnhubProvider
from investsync.providers.fmp import FMPProvider
from investsync.providers.polygon import PolygonProvider
from investsync.providers.raiffeisen_cz import (
    FUND_PAGE,
    STOCK_PAGE,
    RaiffeisenCZProvider,
    parse_certificate_page,
    parse_number,
    parse_product_page,
)
from investsync.providers.yahoo_finance import YahooFinanceProvider
from investsync.services.rate_limiter import RateLimiter

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeConverter:
    """Multiplies by a fixed rate table; records conversions."""

    def __init__(self, rates: dict[tuple[str, str], float] | None = None) -> None:
        self.rates = rates or {}
        self.calls: list[tuple[float, str, str]] = []

    async def convert(self, amount, from_currency, to_currency, timeout=None):
        self.calls.append((amount, from_currency, to_currency))
        return amount * self.rates.get((from_currency.upper(), to_currency.upper()), 1.0)


def _client(handler, base_url: str = "https://upstream.test") -> tuple[httpx.AsyncClient, list]:
    calls: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(recording), base_url=base_url), calls


def _limiter(limit: int = 1000) -> RateLimiter:
    return RateLimiter("test", limit, 60.0)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_is_valid_price(self):
        assert is_valid_price(1.5)
        assert is_valid_price(3)
        assert not is_valid_price(0)
        assert not is_valid_price(-1)
        assert not is_valid_price(float("nan"))
        assert not is_valid_price(None)
        assert not is_valid_price("12")
        assert not is_valid_price(True)

    def test_is_simple_ticker(self):
        assert is_simple_ticker("BTC")
        assert is_simple_ticker("aapl2")
        assert not is_simple_ticker("BRK.B")
        assert not is_simple_ticker("^GSPC")
        assert not is_simple_ticker("I:SPX")

    def test_match_requested(self):
        assert match_requested("BTC", ["eth", "btc"]) == "btc"
        assert match_requested("DOGE", ["btc"]) is None
        assert match_requested(None, ["btc"]) is None


# ---------------------------------------------------------------------------
# CoinMarketCap
# ---------------------------------------------------------------------------


def _cmc_asset(symbol: str, price: float, currency: str = "USD", active: int = 1) -> list:
    return [{"symbol": symbol, "is_active": active, "quote": {currency: {"price": price}}}]


class TestCoinMarketCap:
    @pytest.mark.asyncio
    async def test_parses_batch_and_maps_spelling(self):
        body = {"data": {"BTC": _cmc_asset("BTC", 45000), "ETH": _cmc_asset("ETH", 3000)}}
        client, calls = _client(lambda r: httpx.Response(200, json=body))
        provider = CoinMarketCapProvider(FakeConverter(), client, api_key="k")

        quotes = await provider.fetch_prices(["btc", "ETH"], "usd")

        assert {q["symbol"]: q["price"] for q in quotes} == {"btc": 45000, "ETH": 3000}
        assert all(q["currency"] == "USD" for q in quotes)
        assert calls[0].url.params["convert"] == "USD"
        assert calls[0].headers["X-CMC_PRO_API_KEY"] == "k"

    @pytest.mark.asyncio
    async def test_skips_non_alphanumeric_without_request(self):
        client, calls = _client(lambda r: httpx.Response(500))
        provider = CoinMarketCapProvider(FakeConverter(), client, api_key="k")

        assert await provider.fetch_prices(["BRK.B", "I:SPX"], "USD") == []
        assert calls == []

    @pytest.mark.asyncio
    async def test_only_alphanumeric_symbols_requested(self):
        body = {"data": {"BTC": _cmc_asset("BTC", 45000)}}
        client, calls = _client(lambda r: httpx.Response(200, json=body))
        provider = CoinMarketCapProvider(FakeConverter(), client, api_key="k")

        await provider.fetch_prices(["BTC", "BRK.B"], "USD")
        assert calls[0].url.params["symbol"] == "BTC"

    @pytest.mark.asyncio
    async def test_inactive_asset_not_found(self):
        body = {"data": {"LUNA": _cmc_asset("LUNA", 0.5, active=0)}}
        client, _ = _client(lambda r: httpx.Response(200, json=body))
        provider = CoinMarketCapProvider(FakeConverter(), client, api_key="k")

        assert await provider.fetch_prices(["LUNA"], "USD") == []

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        client, _ = _client(lambda r: httpx.Response(401, text="bad key"))
        provider = CoinMarketCapProvider(FakeConverter(), client, api_key="k")

        with pytest.raises(ProviderError):
            await provider.fetch_prices(["BTC"], "USD")

    @pytest.mark.asyncio
    async def test_missing_key_unavailable_and_raises(self):
        client, _ = _client(lambda r: httpx.Response(200, json={}))
        provider = CoinMarketCapProvider(FakeConverter(), client, api_key="")

        assert provider.is_available() is False
        with pytest.raises(ProviderError):
            await provider.fetch_prices(["BTC"], "USD")


# ---------------------------------------------------------------------------
# Yahoo Finance
# ---------------------------------------------------------------------------


class TestYahooFinance:
    @pytest.mark.asyncio
    async def test_converts_native_currency(self):
        converter = FakeConverter({("EUR", "USD"): 1.1})
        provider = YahooFinanceProvider(converter)

        with patch(
            "investsync.providers.yahoo_finance._lookup_quote",
            return_value=(100.0, "EUR"),
        ):
            quotes = await provider.fetch_prices(["SAP.DE"], "USD")

        assert quotes == [{"symbol": "SAP.DE", "price": pytest.approx(110.0), "currency": "USD"}]

    @pytest.mark.asyncio
    async def test_pence_normalised_to_pounds(self):
        converter = FakeConverter()
        provider = YahooFinanceProvider(converter)

        with patch(
            "investsync.providers.yahoo_finance._lookup_quote",
            return_value=(250.0, "GBp"),
        ):
            quotes = await provider.fetch_prices(["VOD.L"], "GBP")

        assert quotes[0]["price"] == pytest.approx(2.5)
        assert converter.calls == []

    @pytest.mark.asyncio
    async def test_failure_and_missing_price_are_isolated(self):
        provider = YahooFinanceProvider(FakeConverter())

        def lookup(symbol):
            if symbol == "BOOM":
                raise KeyError("currentTradingPeriod")
            if symbol == "NONE":
                return None, None
            return 150.0, "USD"

        with patch("investsync.providers.yahoo_finance._lookup_quote", side_effect=lookup):
            quotes = await provider.fetch_prices(["BOOM", "NONE", "AAPL"], "USD")

        assert [q["symbol"] for q in quotes] == ["AAPL"]

    def test_always_available(self):
        assert YahooFinanceProvider(FakeConverter()).is_available()

    @pytest.mark.asyncio
    async def test_opens_no_http_client(self):
        provider = YahooFinanceProvider(FakeConverter())
        assert not hasattr(provider, "_client")
        await provider.close()


# ---------------------------------------------------------------------------
# Raiffeisen CZ
# ---------------------------------------------------------------------------

_STOCK_HTML = """
<div class="striped-list">
  <div class="striped-list-label">Quote</div>
  <div class="striped-list-value">1 234,56</div>
  <div class="striped-list-label">Currency</div>
  <div class="striped-list-value">czk</div>
</div>
"""

_FUND_HTML = """
<div class="top-info">
  <span class="top-info-label">Price</span>
  <span class="top-info-value">12.34 EUR</span>
  <span class="top-info-label">Currency</span>
  <span class="top-info-value">EUR</span>
</div>
"""

_CERT_HTML = """
<div class="top-info">
  <span class="top-info-label">Bid</span>
  <span class="top-info-value">98.5 %</span>
</div>
<div class="striped-list">
  <div class="striped-list-label">Denomination / nominal</div>
  <div class="striped-list-value">10,000</div>
  <div class="striped-list-label">Product currency</div>
  <div class="striped-list-value">CZK</div>
</div>
"""


class TestRaiffeisenParsing:
    def test_parse_number_formats(self):
        assert parse_number("1 234,56") == pytest.approx(1234.56)
        assert parse_number("1,234.56 CZK") == pytest.approx(1234.56)
        assert parse_number("1.234,5") == pytest.approx(1234.5)
        assert parse_number("10,000") == pytest.approx(10000.0)
        assert parse_number("98.5 %") == pytest.approx(98.5)
        assert parse_number("1.2345 EUR") == pytest.approx(1.2345)
        assert parse_number("99.875") == pytest.approx(99.875)
        assert parse_number("1,000 CZK") == pytest.approx(1000.0)
        assert parse_number("1,5") == pytest.approx(1.5)
        assert parse_number("1.234.567") == pytest.approx(1234567.0)
        assert parse_number("n/a") is None
        assert parse_number("") is None

    def test_stock_page(self):
        quote = parse_product_page(_STOCK_HTML, STOCK_PAGE)
        assert quote.price == pytest.approx(1234.56)
        assert quote.currency == "CZK"

    def test_fund_page(self):
        quote = parse_product_page(_FUND_HTML, FUND_PAGE)
        assert quote.price == pytest.approx(12.34)
        assert quote.currency == "EUR"

    def test_missing_label_returns_none(self):
        assert parse_product_page(_FUND_HTML, STOCK_PAGE) is None
        assert parse_product_page("", STOCK_PAGE) is None

    def test_certificate_is_nominal_times_bid_percent(self):
        quote = parse_certificate_page(_CERT_HTML)
        assert quote.price == pytest.approx(9850.0)
        assert quote.currency == "CZK"

    def test_certificate_with_fractional_bid(self):
        html = _CERT_HTML.replace("98.5 %", "99.875").replace("10,000", "1,000 CZK")
        quote = parse_certificate_page(html)
        assert quote.price == pytest.approx(998.75)


class TestRaiffeisenProvider:
    @pytest.mark.asyncio
    async def test_falls_through_to_fund_page(self):
        def handler(request):
            if request.url.path.endswith("/fund/"):
                return httpx.Response(200, text=_FUND_HTML)
            return httpx.Response(404)

        client, calls = _client(handler, "https://investice.test/en/produkt")
        converter = FakeConverter({("EUR", "CZK"): 25.0})
        provider = RaiffeisenCZProvider(converter, client)

        quotes = await provider.fetch_prices(["AT0000A0E9W5"], "CZK")

        assert quotes == [{"symbol": "AT0000A0E9W5", "price": pytest.approx(308.5), "currency": "CZK"}]
        assert [c.url.path.rsplit("/", 2)[-2] for c in calls] == ["stock", "fund"]
        assert calls[0].url.params["ISIN"] == "AT0000A0E9W5"

    @pytest.mark.asyncio
    async def test_nothing_found_after_all_pages(self):
        client, calls = _client(lambda r: httpx.Response(404))
        provider = RaiffeisenCZProvider(FakeConverter(), client)

        assert await provider.fetch_prices(["CZ0000000000"], "CZK") == []
        assert len(calls) == 3


# ---------------------------------------------------------------------------
# Finnhub
# ---------------------------------------------------------------------------


class TestFinnhub:
    @pytest.mark.asyncio
    async def test_direct_quote_converted_from_usd(self):
        client, calls = _client(lambda r: httpx.Response(200, json={"c": 150.0, "pc": 149.0}))
        converter = FakeConverter({("USD", "EUR"): 0.9})
        provider = FinnhubProvider(converter, client, api_key="k", limiter=_limiter())

        quotes = await provider.fetch_prices(["AAPL"], "EUR")

        assert quotes == [{"symbol": "AAPL", "price": pytest.approx(135.0), "currency": "EUR"}]
        assert calls[0].url.params["token"] == "k"

    @pytest.mark.asyncio
    async def test_search_fallback_for_isin(self):
        def handler(request):
            if request.url.path.endswith("/search"):
                return httpx.Response(200, json={"result": [
                    {"symbol": "IWDA.AS", "displaySymbol": "IWDA.AS"},
                ]})
            if request.url.params["symbol"] == "IWDA.AS":
                return httpx.Response(200, json={"c": 80.5})
            return httpx.Response(200, json={"c": 0, "pc": 0})

        client, calls = _client(handler)
        provider = FinnhubProvider(FakeConverter(), client, api_key="k", limiter=_limiter())

        quotes = await provider.fetch_prices(["IE00B4L5Y983"], "USD")

        assert quotes == [{"symbol": "IE00B4L5Y983", "price": 80.5, "currency": "USD"}]
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_every_request_goes_through_limiter(self):
        client, _ = _client(lambda r: httpx.Response(200, json={"c": 10.0}))
        limiter = _limiter()
        limiter.acquire = AsyncMock()
        provider = FinnhubProvider(FakeConverter(), client, api_key="k", limiter=limiter)

        await provider.fetch_prices(["A", "B"], "USD")
        assert limiter.acquire.await_count == 2

    @pytest.mark.asyncio
    async def test_network_error_skips_symbol(self):
        def handler(request):
            if request.url.params.get("symbol") == "BAD":
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json={"c": 10.0})

        client, _ = _client(handler)
        provider = FinnhubProvider(FakeConverter(), client, api_key="k", limiter=_limiter())

        quotes = await provider.fetch_prices(["BAD", "GOOD"], "USD")
        assert [q["symbol"] for q in quotes] == ["GOOD"]

    @pytest.mark.asyncio
    async def test_malformed_search_body_skips_symbol(self):
        def handler(request):
            if request.url.path.endswith("/search"):
                return httpx.Response(200, json={"result": ["junk", None]})
            if request.url.params["symbol"] == "BAD":
                return httpx.Response(200, json={"c": 0})
            return httpx.Response(200, json={"c": 150.0})

        client, _ = _client(handler)
        provider = FinnhubProvider(FakeConverter(), client, api_key="k", limiter=_limiter())

        quotes = await provider.fetch_prices(["BAD", "AAPL"], "USD")
        assert quotes == [{"symbol": "AAPL", "price": 150.0, "currency": "USD"}]


# ---------------------------------------------------------------------------
# Alpha Vantage
# ---------------------------------------------------------------------------


class TestAlphaVantage:
    @pytest.mark.asyncio
    async def test_global_quote(self):
        body = {"Global Quote": {"01. symbol": "IBM", "05. price": "185.2500"}}
        client, calls = _client(lambda r: httpx.Response(200, json=body))
        provider = AlphaVantageProvider(FakeConverter(), client, api_key="k", limiter=_limiter())

        quotes = await provider.fetch_prices(["IBM"], "USD")

        assert quotes == [{"symbol": "IBM", "price": pytest.approx(185.25), "currency": "USD"}]
        assert calls[0].url.params["function"] == "GLOBAL_QUOTE"

    @pytest.mark.asyncio
    async def test_throttle_note_returns_partial(self):
        responses = iter([
            {"Global Quote": {"05. price": "10.0"}},
            {"Note": "Thank you for using Alpha Vantage! Our standard API call frequency is 5 calls per minute"},
            {"Global Quote": {"05. price": "30.0"}},
        ])
        client, calls = _client(lambda r: httpx.Response(200, json=next(responses)))
        provider = AlphaVantageProvider(FakeConverter(), client, api_key="k", limiter=_limiter())

        quotes = await provider.fetch_prices(["A", "B", "C"], "USD")

        assert [q["symbol"] for q in quotes] == ["A"]
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_error_message_skips_symbol(self):
        responses = iter([
            {"Error Message": "Invalid API call"},
            {"Global Quote": {"05. price": "30.0"}},
        ])
        client, _ = _client(lambda r: httpx.Response(200, json=next(responses)))
        provider = AlphaVantageProvider(FakeConverter(), client, api_key="k", limiter=_limiter())

        quotes = await provider.fetch_prices(["BAD", "GOOD"], "USD")
        assert [q["symbol"] for q in quotes] == ["GOOD"]

    @pytest.mark.asyncio
    async def test_malformed_quote_skips_symbol(self):
        responses = iter([
            {"Global Quote": ["unexpected"]},
            {"Global Quote": {"05. price": None}},
            {"Global Quote": {"05. price": "30.0"}},
        ])
        client, _ = _client(lambda r: httpx.Response(200, json=next(responses)))
        provider = AlphaVantageProvider(FakeConverter(), client, api_key="k", limiter=_limiter())

        quotes = await provider.fetch_prices(["BAD", "NULL", "GOOD"], "USD")
        assert [q["symbol"] for q in quotes] == ["GOOD"]


# ---------------------------------------------------------------------------
# Polygon
# ---------------------------------------------------------------------------


class TestPolygon:
    @pytest.mark.asyncio
    async def test_stock_then_index(self):
        def handler(request):
            path = request.url.path
            if path == "/v2/aggs/ticker/AAPL/prev":
                return httpx.Response(200, json={"results": [{"c": 150.0}]})
            if path == "/v2/aggs/ticker/I:SPX/prev":
                return httpx.Response(200, json={"results": [{"c": 5000.0}]})
            return httpx.Response(200, json={"results": []})

        client, calls = _client(handler)
        provider = PolygonProvider(FakeConverter(), client, api_key="k", limiter=_limiter())

        quotes = await provider.fetch_prices(["AAPL", "spx", "NOPE"], "USD")

        assert {q["symbol"]: q["price"] for q in quotes} == {"AAPL": 150.0, "spx": 5000.0}
        index_paths = [c.url.path for c in calls if "I:" in c.url.path]
        assert index_paths == ["/v2/aggs/ticker/I:SPX/prev", "/v2/aggs/ticker/I:NOPE/prev"]

    @pytest.mark.asyncio
    async def test_missing_key_raises(self):
        client, _ = _client(lambda r: httpx.Response(200, json={}))
        provider = PolygonProvider(FakeConverter(), client, api_key="", limiter=_limiter())
        with pytest.raises(ProviderError):
            await provider.fetch_prices(["AAPL"], "USD")

    @pytest.mark.asyncio
    async def test_malformed_results_skip_symbol(self):
        def handler(request):
            if request.url.path == "/v2/aggs/ticker/AAPL/prev":
                return httpx.Response(200, json={"results": [{"c": 150.0}]})
            if "I:" in request.url.path:
                return httpx.Response(200, json={"results": "none"})
            return httpx.Response(200, json={"results": [None]})

        client, _ = _client(handler)
        provider = PolygonProvider(FakeConverter(), client, api_key="k", limiter=_limiter())

        quotes = await provider.fetch_prices(["BAD", "AAPL"], "USD")
        assert quotes == [{"symbol": "AAPL", "price": 150.0, "currency": "USD"}]


# ---------------------------------------------------------------------------
# FMP
# ---------------------------------------------------------------------------


class TestFMP:
    @pytest.mark.asyncio
    async def test_batch_etf_and_index_stages(self):
        def handler(request):
            tickers = request.url.path.rsplit("/", 1)[-1]
            if tickers == "AAPL,VWCE,DAX":
                return httpx.Response(200, json=[{"symbol": "AAPL", "price": 150.0}])
            if tickers == "VWCE":
                return httpx.Response(200, json=[{"symbol": "VWCE", "price": 110.0}])
            if tickers == "^GDAXI":
                return httpx.Response(200, json=[{"symbol": "^GDAXI", "price": 18000.0}])
            return httpx.Response(200, json=[])

        client, calls = _client(handler, "https://fmp.test/api/v3")
        provider = FMPProvider(FakeConverter(), client, api_key="k", limiter=_limiter())

        quotes = await provider.fetch_prices(["AAPL", "VWCE", "DAX"], "USD")

        assert {q["symbol"]: q["price"] for q in quotes} == {
            "AAPL": 150.0, "VWCE": 110.0, "DAX": 18000.0,
        }

    @pytest.mark.asyncio
    async def test_hard_cap_returns_partial_without_waiting(self):
        def handler(request):
            return httpx.Response(200, json=[{"symbol": "AAPL", "price": 150.0}])

        client, calls = _client(handler, "https://fmp.test/api/v3")
        limiter = RateLimiter("fmp", 1, 86400.0)
        provider = FMPProvider(FakeConverter(), client, api_key="k", limiter=limiter)

        quotes = await provider.fetch_prices(["AAPL", "MSFT"], "USD")

        assert [q["symbol"] for q in quotes] == ["AAPL"]
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_exhausted_budget_makes_no_requests(self):
        client, calls = _client(lambda r: httpx.Response(500), "https://fmp.test/api/v3")
        limiter = RateLimiter("fmp", 1, 86400.0)
        limiter.record_call()
        provider = FMPProvider(FakeConverter(), client, api_key="k", limiter=limiter)

        assert await provider.fetch_prices(["AAPL"], "USD") == []
        assert calls == []


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestBuildProviders:
    def test_priority_order(self):
        names = [p.name for p in build_providers(FakeConverter())]
        assert names == [
            "CoinMarketCap",
            "YahooFinance",
            "Raiffeisen CZ",
            "Finnhub",
            "AlphaVantage",
            "Polygon",
            "Financial Modeling Prep",
        ]
