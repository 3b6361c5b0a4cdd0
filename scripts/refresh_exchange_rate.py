"""
Exchange Rate Refresh Script.

Clears the cached exchange rate and fetches a fresh one, then prints a few
conversion examples. With --show, only reports the current rate and cache
state.

Usage:
    python -m scripts.refresh_exchange_rate [--show]
"""

import argparse
import asyncio
import sys

from backend.app.core.config import settings
from backend.app.core.redis_client import redis_client, close_redis
from backend.app.domain.billing.currency import CurrencyConverter, format_amount
from backend.app.services.rate_cache import RateCache


async def show_current_rate(converter: CurrencyConverter):
    cached = await converter.is_cached()
    rate = await converter.get_exchange_rate()

    print("📊 Current Exchange Rate Configuration:\n")
    print(f"   Mode: {'🔒 Fixed Rate' if settings.use_fixed_exchange_rate else '🌐 Dynamic API'}")
    print(f"   Rate: {converter.rate_text(rate)}")
    print(f"   Cache: {'✅ Cached' if cached else '❌ Not cached'}")

    if not settings.use_fixed_exchange_rate:
        ttl_minutes = settings.exchange_rate_cache_ttl_seconds // 60
        print(f"\n   💡 Tip: Rate is cached for {ttl_minutes} minutes. Run without --show to refresh now.")


async def refresh(converter: CurrencyConverter):
    print("🔄 Refreshing exchange rate...")
    rate = await converter.refresh_rate()

    local, foreign = converter.local_currency, converter.foreign_currency

    print("\n✅ Exchange rate refreshed successfully!")
    print(f"   📊 Current Rate: {converter.rate_text(rate)}")
    print("\n   💰 Examples:")
    for amount in (1_000_000, 5_000_000):
        converted = await converter.to_foreign(amount, rate)
        print(f"      - {format_amount(amount, local)} = {format_amount(converted, foreign)}")
    for amount in (100, 500):
        converted = await converter.to_local(amount, rate)
        print(f"      - {format_amount(amount, foreign)} = {format_amount(converted, local)}")


async def main(show_only: bool) -> int:
    converter = CurrencyConverter(cache=RateCache(redis_client))
    try:
        if show_only:
            await show_current_rate(converter)
        else:
            await refresh(converter)
    finally:
        await close_redis()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Refresh exchange rate from API and clear cache")
    parser.add_argument("--show", action="store_true", help="Show current rate without refreshing")
    args = parser.parse_args()

    sys.exit(asyncio.run(main(args.show)))
