"""
Fiat Conversion Service

Drives a conversion from a completed crypto payment to a fiat payout:
- eligibility (automatic) and ownership (manual) checks
- pricing through the rate cache and the fee schedule
- persistence of the pending record, then synchronous execution
- payout submission with a bounded wait and failure capture

The record is committed before every external call so that a crash leaves
an inspectable pending/processing row behind.
"""

import secrets
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from datetime import timedelta
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from conversion.errors import (
    ConversionNotAllowed,
    ExecutionError,
    NotFound,
    PayoutTimeout,
    Unauthorized,
)
from conversion.fees import compute_fees
from conversion.policy import should_auto_convert
from conversion.rates import FiatQuote, RateCache
from conversion import settings_store
from core.logging import BusinessEvents
from core.metrics import conversions_total, payout_latency
from core.tracing import get_tracer
from db.models import (
    ConversionMethod,
    ConversionSettings,
    ConversionStatus,
    ConversionTransaction,
    CryptoCurrency,
    FiatCurrency,
    Payment,
    PaymentStatus,
    utcnow,
)
from payments.payout import PayoutProvider, PayoutRequest, PayoutResult

log = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

CONVERSION_FAILED = "CONVERSION_FAILED"
EXECUTION_ERROR = "EXECUTION_ERROR"
PAYOUT_TIMEOUT = "PAYOUT_TIMEOUT"

DEFAULT_PAYOUT_TIMEOUT_SECONDS = 30.0
DEFAULT_ESTIMATED_ARRIVAL_DAYS = 2

# Shared by all service instances; payout calls are the only blocking work here
_payout_pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix="payout")


def _log_late_payout(conversion_id: str):
    def callback(future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            log.error(
                BusinessEvents.PAYOUT_LATE_RESULT,
                conversion_id=conversion_id,
                success=False,
                error=str(error),
            )
            return
        result = future.result()
        log.warning(
            BusinessEvents.PAYOUT_LATE_RESULT,
            conversion_id=conversion_id,
            success=result.success,
            payout_id=result.payout_id,
            provider_error=result.error,
        )

    return callback


def generate_conversion_id() -> str:
    return f"conv_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


class ConversionService:
    def __init__(
        self,
        db: Session,
        rate_cache: RateCache,
        payout_provider: PayoutProvider,
        payout_timeout: float = DEFAULT_PAYOUT_TIMEOUT_SECONDS,
        estimated_arrival_days: int = DEFAULT_ESTIMATED_ARRIVAL_DAYS,
    ):
        self.db = db
        self.rate_cache = rate_cache
        self.payout_provider = payout_provider
        self.payout_timeout = payout_timeout
        self.estimated_arrival_days = estimated_arrival_days

    # Pricing

    def estimate(self, crypto_amount, crypto_currency: str, fiat_currency: str) -> dict:
        """Preview a conversion without persisting anything."""
        quote = self.rate_cache.convert(crypto_amount, crypto_currency, fiat_currency)
        fees = compute_fees(quote.fiat_amount, crypto_currency, fiat_currency)
        return {
            "crypto_amount": quote.crypto_amount,
            "crypto_currency": crypto_currency,
            "fiat_amount": quote.fiat_amount,
            "fiat_currency": fiat_currency,
            "exchange_rate": quote.exchange_rate,
            "fees": fees.as_dict(),
            "net_amount": quote.fiat_amount - fees.total,
        }

    # Lookups

    def _get_payment(self, payment_id: int) -> Payment:
        payment = self.db.get(Payment, payment_id)
        if payment is None:
            raise NotFound("Payment not found")
        return payment

    def get_conversion(self, merchant_id: str, conversion_id: str) -> ConversionTransaction:
        record = (
            self.db.execute(
                select(ConversionTransaction).filter(
                    ConversionTransaction.conversion_id == conversion_id
                )
            )
            .scalars()
            .first()
        )
        if record is None or record.merchant_id != merchant_id:
            raise NotFound("Conversion not found")
        return record

    # Triggers

    def process_auto_conversion(self, payment_id: int) -> Optional[ConversionTransaction]:
        """Convert a completed payment if the merchant's policy allows it."""
        payment = self._get_payment(payment_id)
        if payment.status != PaymentStatus.completed:
            raise ConversionNotAllowed("Payment not completed yet")

        settings = settings_store.get_settings(
            self.db, payment.merchant_id, active_only=True
        )
        if not should_auto_convert(settings, payment.amount, payment.currency):
            log.info(
                "conversion.skipped",
                payment_id=payment.id,
                merchant_id=payment.merchant_id,
            )
            return None

        return self.initiate_conversion(payment, settings, ConversionMethod.automatic)

    def initiate_manual_conversion(
        self, merchant_id: str, payment_id: int
    ) -> ConversionTransaction:
        payment = self._get_payment(payment_id)
        if payment.merchant_id != merchant_id:
            raise Unauthorized("Unauthorized access to payment")

        settings = settings_store.get_settings(self.db, merchant_id, active_only=True)
        if settings is None:
            raise NotFound(
                "Conversion settings not configured. "
                "Please set up your banking information first."
            )
        if not settings.auto_convert_enabled:
            raise ConversionNotAllowed(
                "Auto-conversion is disabled. Please enable it in your settings."
            )
        if payment.status != PaymentStatus.completed:
            raise ConversionNotAllowed("Payment not completed yet")

        return self.initiate_conversion(
            payment, settings, ConversionMethod.manual, merchant_id=merchant_id
        )

    # Lifecycle

    def initiate_conversion(
        self,
        payment: Payment,
        settings: ConversionSettings,
        method: ConversionMethod,
        merchant_id: Optional[str] = None,
    ) -> ConversionTransaction:
        """
        Price, persist and execute a conversion for `payment`.

        Rate or fee failures raise before anything is written. A declined
        payout comes back as a failed record; an execution fault is
        recorded and re-raised as ExecutionError. A payout timeout leaves
        the record processing and raises PayoutTimeout.
        """
        method = ConversionMethod(method)
        if method == ConversionMethod.manual and payment.merchant_id != merchant_id:
            raise Unauthorized("Unauthorized access to payment")

        fiat_currency = settings.preferred_fiat_currency.value
        quote: FiatQuote = self.rate_cache.convert(
            payment.crypto_amount, payment.currency, fiat_currency
        )
        fees = compute_fees(quote.fiat_amount, payment.currency, fiat_currency)

        record = ConversionTransaction(
            conversion_id=generate_conversion_id(),
            merchant_id=payment.merchant_id,
            original_payment_id=payment.id,
            crypto_amount=str(payment.crypto_amount),
            crypto_currency=CryptoCurrency(payment.currency),
            fiat_amount=quote.fiat_amount,
            fiat_currency=FiatCurrency(fiat_currency),
            exchange_rate=quote.exchange_rate,
            status=ConversionStatus.pending,
            conversion_method=method,
            conversion_provider=self.payout_provider.name,
            fee_conversion=fees.conversion,
            fee_network=fees.network,
            fee_banking=fees.banking,
            fee_total=fees.total,
            banking_details=dict(settings.banking_info or {}),
            initiated_at=utcnow(),
        )
        self.db.add(record)
        self.db.commit()

        log.info(
            BusinessEvents.CONVERSION_INITIATED,
            conversion_id=record.conversion_id,
            merchant_id=record.merchant_id,
            payment_id=payment.id,
            method=method.value,
            fiat_amount=str(quote.fiat_amount),
            fiat_currency=fiat_currency,
            exchange_rate=str(quote.exchange_rate),
        )

        return self.execute_conversion(record)

    def execute_conversion(self, record: ConversionTransaction) -> ConversionTransaction:
        record.transition_to(ConversionStatus.processing)
        self.db.commit()
        log.info(BusinessEvents.CONVERSION_PROCESSING, conversion_id=record.conversion_id)

        request = PayoutRequest(
            conversion_id=record.conversion_id,
            merchant_id=record.merchant_id,
            fiat_amount=Decimal(record.fiat_amount),
            fiat_currency=record.fiat_currency.value,
            net_amount=record.net_fiat_amount,
            banking_details=dict(record.banking_details or {}),
        )

        with tracer.start_as_current_span("conversion.payout") as span:
            span.set_attribute("conversion.id", record.conversion_id)
            span.set_attribute("conversion.provider", self.payout_provider.name.value)
            try:
                result = self._submit_payout(request)
            except PayoutTimeout as e:
                span.record_exception(e)
                self._record_payout_timeout(record, e)
                raise
            except Exception as e:
                span.record_exception(e)
                self._record_execution_error(record, e)
                if isinstance(e, ExecutionError):
                    raise
                raise ExecutionError(record.conversion_id, str(e)) from e

        if result.success:
            record.mark_completed(
                payout_id=result.payout_id or f"payout_{int(time.time() * 1000)}",
                estimated_arrival=utcnow() + timedelta(days=self.estimated_arrival_days),
                tracking_number=result.tracking_number,
            )
            self.db.commit()
            conversions_total.labels(
                status="completed", method=record.conversion_method.value
            ).inc()
            log.info(
                BusinessEvents.CONVERSION_COMPLETED,
                conversion_id=record.conversion_id,
                payout_id=record.payout_id,
            )
        else:
            record.mark_failed(
                CONVERSION_FAILED, "Conversion process failed", provider_error=result.error
            )
            self.db.commit()
            conversions_total.labels(
                status="failed", method=record.conversion_method.value
            ).inc()
            log.warning(
                BusinessEvents.CONVERSION_FAILED,
                conversion_id=record.conversion_id,
                code=CONVERSION_FAILED,
                provider_error=result.error,
            )

        return record

    def _submit_payout(self, request: PayoutRequest) -> PayoutResult:
        started = time.perf_counter()
        future = _payout_pool.submit(self.payout_provider.submit, request)
        try:
            return future.result(timeout=self.payout_timeout)
        except FuturesTimeout:
            # The provider call keeps running; its eventual outcome is only logged
            future.add_done_callback(_log_late_payout(request.conversion_id))
            raise PayoutTimeout(
                request.conversion_id,
                f"Payout submission timed out after {self.payout_timeout}s",
            )
        finally:
            payout_latency.observe(time.perf_counter() - started)

    def _record_payout_timeout(self, record: ConversionTransaction, error: PayoutTimeout):
        # Stays in processing: the payout may still land and must be reconciled
        self.db.rollback()
        record.mark_unresolved(PAYOUT_TIMEOUT, error.message)
        self.db.commit()
        conversions_total.labels(status="timeout", method=record.conversion_method.value).inc()
        log.error(
            BusinessEvents.PAYOUT_TIMEOUT,
            conversion_id=record.conversion_id,
            code=PAYOUT_TIMEOUT,
            timeout_seconds=self.payout_timeout,
        )

    def _record_execution_error(self, record: ConversionTransaction, error: Exception):
        self.db.rollback()
        record.mark_failed(EXECUTION_ERROR, str(error), provider_error=type(error).__name__)
        self.db.commit()
        conversions_total.labels(status="failed", method=record.conversion_method.value).inc()
        log.error(
            BusinessEvents.CONVERSION_EXECUTION_ERROR,
            conversion_id=record.conversion_id,
            code=EXECUTION_ERROR,
            error=str(error),
        )

    def cancel_conversion(self, merchant_id: str, conversion_id: str) -> ConversionTransaction:
        """Abandon a conversion that has not started executing."""
        record = self.get_conversion(merchant_id, conversion_id)
        record.transition_to(ConversionStatus.cancelled)
        self.db.commit()
        log.info(BusinessEvents.CONVERSION_CANCELLED, conversion_id=conversion_id)
        return record
