"""Market-data providers package."""

from investsync.providers.alpha_vantage import AlphaVantageProvider
from investsync.providers.base import PriceProvider, PriceQuote, ProviderError
from investsync.providers.coinmarketcap import CoinMarketCapProvider
from investsync.providers.finnhub import FinnhubProvider
from investsync.providers.fmp import FMPProvider
from investsync.providers.polygon import PolygonProvider
from investsync.providers.raiffeisen_cz import RaiffeisenCZProvider
from investsync.providers.yahoo_finance import YahooFinanceProvider
from investsync.services.currency import CurrencyConverter


def build_providers(converter: CurrencyConverter) -> list[PriceProvider]:
    """All providers in priority order, sharing one converter.

    Specialised sources come first; quota-limited APIs last.
    """
    return [
        CoinMarketCapProvider(converter),
        YahooFinanceProvider(converter),
        RaiffeisenCZProvider(converter),
        FinnhubProvider(converter),
        AlphaVantageProvider(converter),
        PolygonProvider(converter),
        FMPProvider(converter),
    ]


__all__ = [
    "AlphaVantageProvider",
    "CoinMarketCapProvider",
    "FMPProvider",
    "FinnhubProvider",
    "PolygonProvider",
    "PriceProvider",
    "PriceQuote",
    "ProviderError",
    "RaiffeisenCZProvider",
    "YahooFinanceProvider",
    "build_providers",
]
