"""
API Schemas Module

This module defines Pydantic models for request/response validation.
Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from db.models import (
    AccountType,
    ConversionMethod,
    ConversionProvider,
    ConversionStatus,
    CryptoCurrency,
    FiatCurrency,
    PayoutStatus,
)


class APIModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True, alias_generator=to_camel, populate_by_name=True
    )


# Requests


class BankingInfoIn(APIModel):
    account_type: Optional[AccountType] = None
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    routing_number: Optional[str] = None
    account_holder_name: Optional[str] = None
    swift_code: Optional[str] = None
    iban: Optional[str] = None


class LimitsIn(APIModel):
    slippage_tolerance_percent: Optional[Decimal] = None
    min_conversion_amount: Optional[Decimal] = None
    max_conversion_amount: Optional[Decimal] = None
    conversion_delay_hours: Optional[Decimal] = None


class SupportedCryptoIn(APIModel):
    # Plain string so unknown symbols are reported by the settings validator
    symbol: str
    enabled: bool = True


class SettingsIn(APIModel):
    auto_convert_enabled: bool = False
    conversion_threshold: Optional[Decimal] = None
    preferred_fiat_currency: Optional[str] = None
    banking_info: Optional[BankingInfoIn] = None
    limits: Optional[LimitsIn] = None
    supported_cryptos: Optional[list[SupportedCryptoIn]] = None

    def to_patch(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True, by_alias=False)


class ToggleIn(APIModel):
    enabled: bool


class EstimateIn(APIModel):
    crypto_amount: Decimal = Field(gt=0)
    crypto_currency: CryptoCurrency
    fiat_currency: FiatCurrency = FiatCurrency.USD


class RiskScoreIn(APIModel):
    amount: Decimal = Field(ge=0)
    customer_info: dict[str, Any] = Field(default_factory=dict)


class PaymentCompletedIn(APIModel):
    payment_id: int


# Responses


class MaskedBankingOut(APIModel):
    """Banking details safe to return; account and routing numbers are withheld."""

    account_type: Optional[AccountType] = None
    bank_name: Optional[str] = None
    account_holder_name: Optional[str] = None


class LimitsOut(APIModel):
    slippage_tolerance_percent: float
    min_conversion_amount: float
    max_conversion_amount: float
    conversion_delay_hours: int


class SupportedCryptoOut(APIModel):
    symbol: str
    enabled: bool = True


class SettingsOut(APIModel):
    merchant_id: str
    auto_convert_enabled: bool
    conversion_threshold: float
    preferred_fiat_currency: FiatCurrency
    banking_info: MaskedBankingOut
    limits: LimitsOut
    supported_cryptos: list[SupportedCryptoOut]
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FeesOut(APIModel):
    conversion: float
    network: float
    banking: float
    total: float


class TimestampsOut(APIModel):
    initiated: Optional[datetime] = None
    processed: Optional[datetime] = None
    completed: Optional[datetime] = None
    failed: Optional[datetime] = None
    cancelled: Optional[datetime] = None


class PayoutDetailsOut(APIModel):
    payout_id: Optional[str] = None
    payout_status: Optional[PayoutStatus] = None
    estimated_arrival: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None
    tracking_number: Optional[str] = None


class ErrorDetailsOut(APIModel):
    code: Optional[str] = None
    message: Optional[str] = None
    provider_error: Optional[str] = None


class ConversionOut(APIModel):
    conversion_id: str
    merchant_id: str
    original_payment_id: int
    crypto_amount: str
    crypto_currency: CryptoCurrency
    fiat_amount: float
    fiat_currency: FiatCurrency
    exchange_rate: float
    net_fiat_amount: float
    status: ConversionStatus
    conversion_method: ConversionMethod
    conversion_provider: ConversionProvider
    fees: FeesOut
    banking_details: MaskedBankingOut
    payout_details: Optional[PayoutDetailsOut] = None
    error_details: Optional[ErrorDetailsOut] = None
    timestamps: TimestampsOut
    processing_time_ms: Optional[float] = None


class EstimateOut(APIModel):
    crypto_amount: str
    crypto_currency: CryptoCurrency
    fiat_amount: float
    fiat_currency: FiatCurrency
    exchange_rate: float
    fees: FeesOut
    net_amount: float


class StatsOut(APIModel):
    total_conversions: int
    total_fiat_amount: float
    total_fees: float
    completed_conversions: int
    failed_conversions: int
    avg_processing_time_ms: float


def dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")
