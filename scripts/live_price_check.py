#!/usr/bin/env python3
"""Live check of the provider waterfall and currency conversion.

Resolves a sample of symbols (or the ones given on the command line) through
every configured provider, converts one amount, and prints what each step
returned. Needs network access; provider API keys are read from .env.

Usage:
    python scripts/live_price_check.py [--currency CZK] [SYMBOL ...]
"""

import argparse
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("live_price_check")

_DEFAULT_SYMBOLS = ["BTC", "ETH", "AAPL", "MSFT", "VWCE.DE", "CZ0008019106", "DAX"]


async def main(symbols: list[str], currency: str) -> int:
    from investsync.providers import build_providers
    from investsync.services.currency import CurrencyConverter
    from investsync.services.market_data import MarketDataResolver

    print("=" * 70)
    print("  INVESTSYNC: LIVE PRICE CHECK")
    print("=" * 70)

    converter = CurrencyConverter()
    resolver = MarketDataResolver(build_providers(converter))
    try:
        # -------------------------------------------------------------------
        # Step 1: Providers
        # -------------------------------------------------------------------
        print("\n--- Step 1: Available providers (priority order) ---")
        for i, name in enumerate(resolver.available_providers, 1):
            print(f"  {i}. {name}")

        # -------------------------------------------------------------------
        # Step 2: Currency conversion
        # -------------------------------------------------------------------
        print(f"\n--- Step 2: Convert 100 USD to {currency} ---")
        converted = await converter.convert(100, "USD", currency)
        print(f"  100 USD = {converted:.2f} {currency}")
        if currency != "USD" and converted == 100:
            print("  WARNING: conversion fell back to the unconverted amount.")

        # -------------------------------------------------------------------
        # Step 3: Resolve symbols
        # -------------------------------------------------------------------
        print(f"\n--- Step 3: Resolve {len(symbols)} symbols in {currency} ---")
        result = await resolver.resolve(symbols, currency, log_unresolved=True)

        for quote in sorted(result["found"], key=lambda q: q["symbol"]):
            print(f"    {quote['symbol']:16s} {quote['price']:>14.4f} {quote['currency']}")
        for symbol in result["not_found"]:
            print(f"    {symbol:16s} {'not found':>14s}")
    finally:
        await resolver.close()
        await converter.close()

    print(f"\n  Resolved {len(result['found'])}/{len(result['found']) + len(result['not_found'])}")
    return 0 if result["found"] else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("symbols", nargs="*", default=_DEFAULT_SYMBOLS)
    parser.add_argument("--currency", default="USD")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.symbols, args.currency.upper())))
