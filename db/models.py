"""
Database Models Module

This module defines SQLAlchemy ORM models for:
- Completed crypto payments (read-only source for conversions)
- Merchant conversion settings
- Conversion transactions and their payout tracking
- Audit logs
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from conversion.errors import InvalidStatusTransition

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class CryptoCurrency(PyEnum):
    USDC = "USDC"
    USDT = "USDT"
    DAI = "DAI"
    ETH = "ETH"
    BTC = "BTC"


class FiatCurrency(PyEnum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    CAD = "CAD"
    AUD = "AUD"


class AccountType(PyEnum):
    checking = "checking"
    savings = "savings"
    business = "business"


class PaymentStatus(PyEnum):
    pending = "pending"
    completed = "completed"
    failed = "failed"


class ConversionStatus(PyEnum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


TERMINAL_STATUSES = frozenset(
    {ConversionStatus.completed, ConversionStatus.failed, ConversionStatus.cancelled}
)

ALLOWED_TRANSITIONS = {
    ConversionStatus.pending: {ConversionStatus.processing, ConversionStatus.cancelled},
    ConversionStatus.processing: {ConversionStatus.completed, ConversionStatus.failed},
}


class ConversionMethod(PyEnum):
    automatic = "automatic"
    manual = "manual"
    scheduled = "scheduled"


class ConversionProvider(PyEnum):
    coinbase = "coinbase"
    kraken = "kraken"
    binance = "binance"
    internal = "internal"


class PayoutStatus(PyEnum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    returned = "returned"


class Payment(Base):
    """Completed crypto payment received by a merchant."""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    merchant_id = Column(String(64), nullable=False, index=True)
    amount = Column(Numeric(18, 2), nullable=False)  # fiat-equivalent value
    crypto_amount = Column(String(78), nullable=False)
    currency = Column(String(10), nullable=False)  # crypto symbol
    status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.pending)
    customer_email = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=utcnow)

    conversions = relationship("ConversionTransaction", back_populates="payment")

    def __repr__(self):
        return f"<Payment(id={self.id}, merchant_id={self.merchant_id}, status={self.status})>"


class ConversionSettings(Base):
    """Per-merchant auto-conversion configuration. Soft-deleted via is_active."""

    __tablename__ = "conversion_settings"
    __table_args__ = (Index("ix_conversion_settings_auto", "auto_convert_enabled", "is_active"),)

    id = Column(Integer, primary_key=True)
    merchant_id = Column(String(64), nullable=False, unique=True, index=True)
    auto_convert_enabled = Column(Boolean, nullable=False, default=False)
    conversion_threshold = Column(Numeric(18, 2), nullable=False, default=Decimal("100"))
    preferred_fiat_currency = Column(
        Enum(FiatCurrency), nullable=False, default=FiatCurrency.USD
    )
    banking_info = Column(JSON, nullable=False, default=dict)
    slippage_tolerance_percent = Column(Numeric(5, 2), nullable=False, default=Decimal("0.5"))
    min_conversion_amount = Column(Numeric(18, 2), nullable=False, default=Decimal("10"))
    max_conversion_amount = Column(Numeric(18, 2), nullable=False, default=Decimal("10000"))
    conversion_delay_hours = Column(Integer, nullable=False, default=0)
    # [{"symbol": "USDC", "enabled": true}, ...]
    supported_cryptos = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def crypto_enabled(self, symbol: str) -> bool:
        return any(
            entry.get("symbol") == symbol and entry.get("enabled", True)
            for entry in (self.supported_cryptos or [])
        )

    @property
    def limits(self) -> Dict[str, Any]:
        return {
            "slippage_tolerance_percent": self.slippage_tolerance_percent,
            "min_conversion_amount": self.min_conversion_amount,
            "max_conversion_amount": self.max_conversion_amount,
            "conversion_delay_hours": self.conversion_delay_hours,
        }

    def __repr__(self):
        return (
            f"<ConversionSettings(merchant_id={self.merchant_id}, "
            f"auto={self.auto_convert_enabled}, active={self.is_active})>"
        )


class ConversionTransaction(Base):
    """One crypto-to-fiat conversion attempt. Never deleted."""

    __tablename__ = "conversion_transactions"
    __table_args__ = (
        Index("ix_conversions_merchant_initiated", "merchant_id", "initiated_at"),
        Index("ix_conversions_status", "status"),
    )

    id = Column(Integer, primary_key=True)
    conversion_id = Column(String(64), nullable=False, unique=True, index=True)
    merchant_id = Column(String(64), nullable=False)
    original_payment_id = Column(
        Integer, ForeignKey("payments.id"), nullable=False, index=True
    )
    crypto_amount = Column(String(78), nullable=False)
    crypto_currency = Column(Enum(CryptoCurrency), nullable=False)
    fiat_amount = Column(Numeric(18, 2), nullable=False)
    fiat_currency = Column(Enum(FiatCurrency), nullable=False)
    exchange_rate = Column(Numeric(28, 10), nullable=False)
    status = Column(
        Enum(ConversionStatus), nullable=False, default=ConversionStatus.pending
    )
    conversion_method = Column(Enum(ConversionMethod), nullable=False)
    conversion_provider = Column(Enum(ConversionProvider), nullable=False)

    fee_conversion = Column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    fee_network = Column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    fee_banking = Column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    fee_total = Column(Numeric(18, 2), nullable=False, default=Decimal("0"))

    banking_details = Column(JSON, nullable=False, default=dict)

    payout_id = Column(String(128))
    payout_status = Column(Enum(PayoutStatus))
    estimated_arrival = Column(DateTime(timezone=True))
    actual_arrival = Column(DateTime(timezone=True))
    tracking_number = Column(String(128))

    initiated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    failed_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))

    error_code = Column(String(64))
    error_message = Column(Text)
    provider_error = Column(Text)

    payment = relationship("Payment", back_populates="conversions")

    _STAMPS = {
        ConversionStatus.processing: "processed_at",
        ConversionStatus.completed: "completed_at",
        ConversionStatus.failed: "failed_at",
        ConversionStatus.cancelled: "cancelled_at",
    }

    def transition_to(self, target: ConversionStatus, at: Optional[datetime] = None):
        """Move along the conversion state machine and stamp the matching timestamp."""
        current = self.status or ConversionStatus.pending
        if target not in ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidStatusTransition(self.conversion_id, current, target)
        self.status = target
        setattr(self, self._STAMPS[target], at or utcnow())

    def mark_completed(
        self,
        payout_id: str,
        estimated_arrival: datetime,
        tracking_number: Optional[str] = None,
    ) -> None:
        self.transition_to(ConversionStatus.completed)
        self.payout_id = payout_id
        self.payout_status = PayoutStatus.processing
        self.estimated_arrival = estimated_arrival
        self.tracking_number = tracking_number

    def mark_failed(
        self, code: str, message: str, provider_error: Optional[str] = None
    ) -> None:
        self.transition_to(ConversionStatus.failed)
        self.error_code = code
        self.error_message = message
        self.provider_error = provider_error

    def mark_unresolved(self, code: str, message: str) -> None:
        """Flag a processing record whose payout outcome is unknown."""
        if self.status != ConversionStatus.processing:
            raise InvalidStatusTransition(
                self.conversion_id, self.status, ConversionStatus.processing
            )
        self.error_code = code
        self.error_message = message

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def fees(self) -> Dict[str, Decimal]:
        return {
            "conversion": self.fee_conversion,
            "network": self.fee_network,
            "banking": self.fee_banking,
            "total": self.fee_total,
        }

    @property
    def net_fiat_amount(self) -> Decimal:
        return Decimal(self.fiat_amount) - Decimal(self.fee_total)

    @property
    def timestamps(self) -> Dict[str, Optional[datetime]]:
        return {
            "initiated": self.initiated_at,
            "processed": self.processed_at,
            "completed": self.completed_at,
            "failed": self.failed_at,
            "cancelled": self.cancelled_at,
        }

    @property
    def payout_details(self) -> Optional[Dict[str, Any]]:
        if self.status != ConversionStatus.completed:
            return None
        return {
            "payout_id": self.payout_id,
            "payout_status": self.payout_status,
            "estimated_arrival": self.estimated_arrival,
            "actual_arrival": self.actual_arrival,
            "tracking_number": self.tracking_number,
        }

    @property
    def error_details(self) -> Optional[Dict[str, Any]]:
        if self.status != ConversionStatus.failed:
            return None
        return {
            "code": self.error_code,
            "message": self.error_message,
            "provider_error": self.provider_error,
        }

    @property
    def processing_time_ms(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        delta = as_utc(self.completed_at) - as_utc(self.initiated_at)
        return delta.total_seconds() * 1000

    def __repr__(self):
        return (
            f"<ConversionTransaction(conversion_id={self.conversion_id}, "
            f"status={self.status})>"
        )


class AuditAction(PyEnum):
    """Enum for audit log actions."""

    settings_updated = "settings_updated"
    settings_toggled = "settings_toggled"
    settings_deactivated = "settings_deactivated"
    conversion_requested = "conversion_requested"
    conversion_cancelled = "conversion_cancelled"
    estimate_requested = "estimate_requested"
    payment_event = "payment_event"


class AuditLog(Base):
    """Model for audit logs tracking settings and conversion actions."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    merchant_id = Column(String(64), index=True)
    action = Column(Enum(AuditAction), index=True)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    def __repr__(self):
        return (
            f"<AuditLog(id={self.id}, merchant_id={self.merchant_id}, action={self.action})>"
        )
