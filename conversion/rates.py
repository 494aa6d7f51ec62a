"""
Exchange rate cache.

Holds one immutable snapshot of crypto -> fiat spot rates. Readers take the
current snapshot reference without locking; a refresh builds a new snapshot
and swaps the reference under a lock so concurrent stale readers trigger a
single provider call.
"""

import threading
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional, Protocol

import structlog

from conversion.errors import (
    RateUnavailable,
    UnsupportedAsset,
    UnsupportedCurrency,
    ValidationError,
)
from core.logging import BusinessEvents
from core.metrics import rate_refresh_total
from db.models import CryptoCurrency, FiatCurrency
from payments.pricing import PricingProviderError

log = structlog.get_logger(__name__)

CENTS = Decimal("0.01")
DEFAULT_STALENESS_SECONDS = 300


def to_decimal(value, field: str = "amount") -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError([{"field": field, "message": "must be a number"}])
    if not amount.is_finite():
        raise ValidationError([{"field": field, "message": "must be a number"}])
    return amount


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class PricingProvider(Protocol):
    def fetch(
        self, symbols: Iterable[str], fiat_codes: Iterable[str]
    ) -> Mapping[str, Mapping[str, Decimal]]: ...


@dataclass(frozen=True)
class RateSnapshot:
    rates: Mapping[str, Mapping[str, Decimal]]
    fetched_at: float  # clock() reading at fetch time

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def as_dict(self) -> dict[str, dict[str, Decimal]]:
        return {symbol: dict(per_fiat) for symbol, per_fiat in self.rates.items()}


@dataclass(frozen=True)
class FiatQuote:
    crypto_amount: str
    crypto_currency: str
    fiat_amount: Decimal
    fiat_currency: str
    exchange_rate: Decimal


class RateCache:
    def __init__(
        self,
        provider: PricingProvider,
        staleness_seconds: float = DEFAULT_STALENESS_SECONDS,
        symbols: Optional[Iterable[str]] = None,
        fiat_codes: Optional[Iterable[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.staleness_seconds = staleness_seconds
        self.symbols = tuple(symbols or (c.value for c in CryptoCurrency))
        self.fiat_codes = tuple(fiat_codes or (f.value for f in FiatCurrency))
        self._clock = clock
        self._snapshot: Optional[RateSnapshot] = None
        self._refresh_lock = threading.Lock()

    @property
    def snapshot(self) -> Optional[RateSnapshot]:
        return self._snapshot

    def _is_fresh(self, snapshot: Optional[RateSnapshot]) -> bool:
        return (
            snapshot is not None
            and snapshot.age(self._clock()) < self.staleness_seconds
        )

    def get_snapshot(self) -> RateSnapshot:
        snapshot = self._snapshot
        if self._is_fresh(snapshot):
            return snapshot

        with self._refresh_lock:
            # Another thread may have refreshed while we waited
            snapshot = self._snapshot
            if self._is_fresh(snapshot):
                return snapshot
            return self._refresh(snapshot)

    def get_rates(self) -> Mapping[str, Mapping[str, Decimal]]:
        """Current rates, refreshing from the provider once the snapshot is stale."""
        return self.get_snapshot().rates

    def _refresh(self, previous: Optional[RateSnapshot]) -> RateSnapshot:
        try:
            fetched = self.provider.fetch(self.symbols, self.fiat_codes)
        except PricingProviderError as e:
            log.warning(
                BusinessEvents.RATES_REFRESH_FAILED,
                error=str(e),
                has_fallback=previous is not None,
            )
            if previous is None:
                rate_refresh_total.labels(outcome="unavailable").inc()
                raise RateUnavailable("Unable to fetch exchange rates") from e
            rate_refresh_total.labels(outcome="fallback").inc()
            log.info(
                BusinessEvents.RATES_STALE_FALLBACK,
                age_seconds=round(previous.age(self._clock()), 1),
            )
            return previous

        snapshot = RateSnapshot(
            rates=MappingProxyType(
                {
                    symbol: MappingProxyType(dict(per_fiat))
                    for symbol, per_fiat in fetched.items()
                }
            ),
            fetched_at=self._clock(),
        )
        self._snapshot = snapshot
        rate_refresh_total.labels(outcome="success").inc()
        log.info(BusinessEvents.RATES_REFRESHED, assets=sorted(snapshot.rates))
        return snapshot

    def convert(self, amount, from_crypto: str, to_fiat: str) -> FiatQuote:
        """Price `amount` of `from_crypto` in `to_fiat`, rounded to cents."""
        crypto_amount = to_decimal(amount, field="cryptoAmount")
        rates = self.get_rates()

        per_fiat = rates.get(from_crypto)
        if per_fiat is None:
            raise UnsupportedAsset(from_crypto)
        rate = per_fiat.get(to_fiat)
        if rate is None:
            raise UnsupportedCurrency(to_fiat)

        return FiatQuote(
            crypto_amount=str(amount),
            crypto_currency=from_crypto,
            fiat_amount=round_money(crypto_amount * rate),
            fiat_currency=to_fiat,
            exchange_rate=rate,
        )
