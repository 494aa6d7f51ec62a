"""
Webhook handlers for the payment pipeline
"""

import structlog
from fastapi import APIRouter, Depends

from api.routes.conversions import get_conversion_service
from api.schemas import ConversionOut, PaymentCompletedIn, dump
from conversion.service import ConversionService

log = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/webhook/payment-completed")
def payment_completed(
    payload: PaymentCompletedIn,
    service: ConversionService = Depends(get_conversion_service),
):
    """Run the auto-conversion policy for a payment that just completed."""
    record = service.process_auto_conversion(payload.payment_id)
    if record is None:
        return {"success": True, "converted": False, "conversion": None}
    return {
        "success": True,
        "converted": True,
        "conversion": dump(ConversionOut.model_validate(record)),
    }
