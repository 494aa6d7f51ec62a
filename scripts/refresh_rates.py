#!/usr/bin/env python3
"""
Fetch current exchange rates once and print them.

Useful for checking the pricing provider configuration from a shell or a
cron job before the API is started.
"""

import os
import sys

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conversion.errors import RateUnavailable  # noqa: E402
from conversion.rates import RateCache  # noqa: E402
from core.dependencies import get_settings, init_settings  # noqa: E402
from payments.pricing import CoinGeckoPricingProvider  # noqa: E402


def main():
    init_settings()
    settings = get_settings()

    cache = RateCache(
        CoinGeckoPricingProvider(
            base_url=settings.PRICING_API_URL,
            timeout=settings.PRICING_TIMEOUT_SECONDS,
        ),
        staleness_seconds=settings.RATE_STALENESS_SECONDS,
    )

    try:
        rates = cache.get_rates()
    except RateUnavailable as e:
        print(f"❌ {e.message}")
        sys.exit(1)

    print("💱 Current exchange rates")
    for symbol in sorted(rates):
        quotes = ", ".join(f"{code} {rate}" for code, rate in sorted(rates[symbol].items()))
        print(f"   {symbol:<5} {quotes}")


if __name__ == "__main__":
    main()
