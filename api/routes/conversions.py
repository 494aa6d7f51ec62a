"""
Fiat Conversion Routes

Merchant-scoped endpoints for conversion settings, manual conversions,
history, statistics, live rates and estimates. Every response is an
envelope with a `success` flag; failures are rendered by the application's
exception handlers.
"""

from datetime import UTC, datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.schemas import (
    ConversionOut,
    EstimateIn,
    EstimateOut,
    RiskScoreIn,
    SettingsIn,
    SettingsOut,
    StatsOut,
    ToggleIn,
    dump,
)
from conversion import history, settings_store
from conversion.errors import NotFound
from conversion.rates import RateCache
from conversion.risk import calculate_risk_score
from conversion.service import ConversionService
from core.dependencies import (
    get_current_merchant,
    get_payout_provider,
    get_rate_cache,
    get_settings,
)
from core.settings import Settings
from db.models import ConversionStatus
from db.session import get_db

log = structlog.get_logger(__name__)

router = APIRouter()


def get_conversion_service(
    db: Session = Depends(get_db),
    rate_cache: RateCache = Depends(get_rate_cache),
    payout_provider=Depends(get_payout_provider),
    settings: Settings = Depends(get_settings),
) -> ConversionService:
    return ConversionService(
        db,
        rate_cache,
        payout_provider,
        payout_timeout=settings.PAYOUT_TIMEOUT_SECONDS,
        estimated_arrival_days=settings.PAYOUT_ESTIMATED_ARRIVAL_DAYS,
    )


# Settings


@router.get("/settings")
def read_settings(
    merchant_id: str = Depends(get_current_merchant), db: Session = Depends(get_db)
):
    record = settings_store.get_settings(db, merchant_id)
    if record is None:
        return {
            "success": True,
            "settings": None,
            "message": "No conversion settings configured",
        }
    return {"success": True, "settings": dump(SettingsOut.model_validate(record))}


@router.post("/settings")
def save_settings(
    payload: SettingsIn,
    merchant_id: str = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    """
    Create or update the merchant's conversion settings.

    **Request Example:**
    ```json
    {
        "autoConvertEnabled": true,
        "conversionThreshold": 50,
        "preferredFiatCurrency": "USD",
        "bankingInfo": {
            "accountType": "business",
            "bankName": "First Hemp Credit Union",
            "accountNumber": "000123456789",
            "routingNumber": "021000021",
            "accountHolderName": "Green Leaf LLC"
        },
        "limits": {"minConversionAmount": 10, "maxConversionAmount": 10000},
        "supportedCryptos": [{"symbol": "USDC", "enabled": true}]
    }
    ```
    """
    record = settings_store.upsert_settings(db, merchant_id, payload.to_patch())
    return {
        "success": True,
        "message": "Conversion settings updated successfully",
        "settings": dump(SettingsOut.model_validate(record)),
    }


@router.put("/settings/toggle")
def toggle_settings(
    payload: ToggleIn,
    merchant_id: str = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    record = settings_store.toggle_auto_convert(db, merchant_id, payload.enabled)
    return {
        "success": True,
        "message": f"Auto-conversion {'enabled' if payload.enabled else 'disabled'}",
        "autoConvertEnabled": record.auto_convert_enabled,
    }


@router.delete("/settings")
def delete_settings(
    merchant_id: str = Depends(get_current_merchant), db: Session = Depends(get_db)
):
    if settings_store.deactivate_settings(db, merchant_id) is None:
        raise NotFound("Conversion settings not found")
    return {"success": True, "message": "Conversion settings disabled"}


# Conversions


@router.post("/convert/{payment_id}")
def convert_payment(
    payment_id: int,
    merchant_id: str = Depends(get_current_merchant),
    service: ConversionService = Depends(get_conversion_service),
):
    """Manually convert one of the merchant's completed payments to fiat."""
    record = service.initiate_manual_conversion(merchant_id, payment_id)
    return {
        "success": True,
        "message": "Conversion initiated successfully",
        "conversion": dump(ConversionOut.model_validate(record)),
    }


@router.get("/conversions/{conversion_id}")
def read_conversion(
    conversion_id: str,
    merchant_id: str = Depends(get_current_merchant),
    service: ConversionService = Depends(get_conversion_service),
):
    record = service.get_conversion(merchant_id, conversion_id)
    return {"success": True, "conversion": dump(ConversionOut.model_validate(record))}


@router.post("/conversions/{conversion_id}/cancel")
def cancel_conversion(
    conversion_id: str,
    merchant_id: str = Depends(get_current_merchant),
    service: ConversionService = Depends(get_conversion_service),
):
    record = service.cancel_conversion(merchant_id, conversion_id)
    return {
        "success": True,
        "message": "Conversion cancelled",
        "conversion": dump(ConversionOut.model_validate(record)),
    }


@router.get("/history")
def read_history(
    page: int = Query(1, ge=1),
    limit: int = Query(history.DEFAULT_PAGE_SIZE, ge=1, le=100),
    status: Optional[ConversionStatus] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    merchant_id: str = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    result = history.list_history(
        db,
        merchant_id,
        page=page,
        page_size=limit,
        status=status,
        start_date=start_date,
        end_date=end_date,
    )
    return {
        "success": True,
        "conversions": [dump(ConversionOut.model_validate(r)) for r in result.items],
        "pagination": result.pagination,
    }


@router.get("/stats")
def read_stats(
    period: str = Query(history.DEFAULT_STATS_PERIOD, pattern="^(7d|30d|90d)$"),
    merchant_id: str = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    stats = history.get_stats(db, merchant_id, period)
    return {"success": True, "stats": dump(StatsOut.model_validate(stats)), "period": period}


# Pricing


@router.get("/rates")
def read_rates(rate_cache: RateCache = Depends(get_rate_cache)):
    rates = rate_cache.get_rates()
    return {
        "success": True,
        "rates": {
            symbol: {code: float(rate) for code, rate in per_fiat.items()}
            for symbol, per_fiat in rates.items()
        },
        "lastUpdated": datetime.now(UTC).isoformat(),
    }


@router.post("/estimate")
def estimate_conversion(
    payload: EstimateIn,
    merchant_id: str = Depends(get_current_merchant),
    service: ConversionService = Depends(get_conversion_service),
):
    estimate = service.estimate(
        payload.crypto_amount,
        payload.crypto_currency.value,
        payload.fiat_currency.value,
    )
    return {"success": True, "estimate": dump(EstimateOut.model_validate(estimate))}


@router.post("/risk-score")
def risk_score(payload: RiskScoreIn, merchant_id: str = Depends(get_current_merchant)):
    score = calculate_risk_score(payload.amount, payload.customer_info)
    return {"success": True, "riskScore": score}
