"""
Crypto Spot Price Provider

Batched spot-price lookup against CoinGecko's simple/price endpoint:
- one request covers every supported asset and fiat currency
- bounded timeout, surfaced as PricingTimeout
- connection errors (not timeouts) retried, everything else reported as
  PricingProviderError
"""

from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Mapping

import requests
import structlog
import tenacity

log = structlog.get_logger(__name__)

COINGECKO_SIMPLE_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"

# Provider asset ids keyed by our symbols
COINGECKO_IDS = {
    "USDC": "usd-coin",
    "USDT": "tether",
    "DAI": "dai",
    "ETH": "ethereum",
    "BTC": "bitcoin",
}


class PricingProviderError(Exception):
    pass


class PricingTimeout(PricingProviderError):
    pass


class CoinGeckoPricingProvider:
    def __init__(
        self,
        base_url: str = COINGECKO_SIMPLE_PRICE_URL,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()

    @tenacity.retry(
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=0.2, max=2),
        # ConnectTimeout is also a ConnectionError; timeouts are never retried
        retry=tenacity.retry_if_exception_type(requests.ConnectionError)
        & tenacity.retry_if_not_exception_type(requests.Timeout),
        reraise=True,
    )
    def _get(self, params: dict) -> requests.Response:
        return self.session.get(self.base_url, params=params, timeout=self.timeout)

    def fetch(
        self, symbols: Iterable[str], fiat_codes: Iterable[str]
    ) -> Dict[str, Dict[str, Decimal]]:
        """
        Fetch spot rates for every symbol against every fiat code.

        Returns:
            {"USDC": {"USD": Decimal("1.0"), "EUR": Decimal("0.85")}, ...}
        """
        symbols = [s for s in symbols if s in COINGECKO_IDS]
        fiat_codes = list(fiat_codes)
        params = {
            "ids": ",".join(COINGECKO_IDS[s] for s in symbols),
            "vs_currencies": ",".join(code.lower() for code in fiat_codes),
            "include_24hr_change": "false",
        }

        try:
            response = self._get(params)
            response.raise_for_status()
            payload = response.json()
        except requests.Timeout as e:
            raise PricingTimeout(
                f"Pricing provider timed out after {self.timeout}s"
            ) from e
        except (requests.RequestException, ValueError) as e:
            raise PricingProviderError(f"Pricing provider request failed: {e}") from e

        return self._parse(payload, symbols, fiat_codes)

    @staticmethod
    def _parse(
        payload: Mapping, symbols: list[str], fiat_codes: list[str]
    ) -> Dict[str, Dict[str, Decimal]]:
        if not isinstance(payload, Mapping):
            raise PricingProviderError("Unexpected pricing payload")

        rates: Dict[str, Dict[str, Decimal]] = {}
        for symbol in symbols:
            quotes = payload.get(COINGECKO_IDS[symbol])
            if not isinstance(quotes, Mapping):
                continue
            per_fiat = {}
            for code in fiat_codes:
                raw = quotes.get(code.lower())
                if raw is None:
                    continue
                try:
                    per_fiat[code.upper()] = Decimal(str(raw))
                except InvalidOperation:
                    log.warning("pricing.bad_quote", symbol=symbol, fiat=code, raw=raw)
            if per_fiat:
                rates[symbol] = per_fiat

        if not rates:
            raise PricingProviderError("Pricing provider returned no usable rates")
        return rates
