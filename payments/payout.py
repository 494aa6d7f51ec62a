"""
Fiat Payout Providers

Adapters behind the payout contract used by the conversion orchestrator:
- SimulatedPayoutProvider: demo rail with a configurable success rate
- StripePayoutProvider: real bank payouts through the Stripe Payouts API

A provider returns a PayoutResult for business outcomes (accepted or
declined) and raises for infrastructure faults.
"""

import random
import secrets
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Protocol

import stripe
import structlog
import tenacity

from core.logging import BusinessEvents
from core.settings import Settings
from db.models import ConversionProvider

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PayoutRequest:
    """Detached copy of the conversion fields a payout rail needs."""

    conversion_id: str
    merchant_id: str
    fiat_amount: Decimal
    fiat_currency: str
    net_amount: Decimal
    banking_details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PayoutResult:
    success: bool
    payout_id: Optional[str] = None
    tracking_number: Optional[str] = None
    error: Optional[str] = None


class PayoutProvider(Protocol):
    name: ConversionProvider

    def submit(self, request: PayoutRequest) -> PayoutResult: ...


class SimulatedPayoutProvider:
    name = ConversionProvider.coinbase

    def __init__(
        self,
        success_rate: float = 0.95,
        delay_seconds: float = 2.0,
        rng: Optional[random.Random] = None,
    ):
        self.success_rate = success_rate
        self.delay_seconds = delay_seconds
        self.rng = rng or random.Random()

    def submit(self, request: PayoutRequest) -> PayoutResult:
        if self.delay_seconds:
            time.sleep(self.delay_seconds)

        if self.rng.random() < self.success_rate:
            payout_id = f"payout_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
            log.info(
                BusinessEvents.PAYOUT_SUBMITTED,
                conversion_id=request.conversion_id,
                payout_id=payout_id,
                provider=self.name.value,
            )
            return PayoutResult(success=True, payout_id=payout_id)

        log.warning(
            BusinessEvents.PAYOUT_DECLINED,
            conversion_id=request.conversion_id,
            provider=self.name.value,
        )
        return PayoutResult(success=False, error="Simulated payout declined")


class StripePayoutProvider:
    """Pays out from the platform's own Stripe balance to the merchant's bank."""

    name = ConversionProvider.internal

    def __init__(self, api_key: str):
        stripe.api_key = api_key

    @tenacity.retry(
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=1, min=1, max=8),
        retry=tenacity.retry_if_exception_type(stripe.APIConnectionError),
        reraise=True,
    )
    def _create_payout(self, request: PayoutRequest):
        return stripe.Payout.create(
            amount=int(request.net_amount * 100),
            currency=request.fiat_currency.lower(),
            description=f"Fiat conversion {request.conversion_id}",
            metadata={
                "conversion_id": request.conversion_id,
                "merchant_id": request.merchant_id,
            },
            idempotency_key=f"conversion-{request.conversion_id}",
        )

    def submit(self, request: PayoutRequest) -> PayoutResult:
        try:
            payout = self._create_payout(request)
        except (stripe.InvalidRequestError, stripe.CardError) as e:
            log.warning(
                BusinessEvents.PAYOUT_DECLINED,
                conversion_id=request.conversion_id,
                provider=self.name.value,
                error=str(e),
            )
            return PayoutResult(success=False, error=str(e))

        log.info(
            BusinessEvents.PAYOUT_SUBMITTED,
            conversion_id=request.conversion_id,
            payout_id=payout.id,
            provider=self.name.value,
        )
        return PayoutResult(
            success=True,
            payout_id=payout.id,
            tracking_number=getattr(payout, "balance_transaction", None),
        )


def build_payout_provider(settings: Settings) -> PayoutProvider:
    if settings.PAYOUT_PROVIDER == "stripe":
        if not settings.STRIPE_API_KEY:
            raise RuntimeError("PAYOUT_PROVIDER=stripe requires STRIPE_API_KEY")
        return StripePayoutProvider(settings.STRIPE_API_KEY)
    return SimulatedPayoutProvider(
        success_rate=settings.PAYOUT_SUCCESS_RATE,
        delay_seconds=settings.PAYOUT_SIMULATED_DELAY_SECONDS,
    )
