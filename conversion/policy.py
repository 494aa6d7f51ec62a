"""
Auto-conversion eligibility.

A payment is converted automatically only when the merchant has active
settings with auto-conversion on, the asset is enabled, and the amount clears
the threshold and sits inside the min/max limits.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional

from db.models import ConversionSettings


def should_auto_convert(
    settings: Optional[ConversionSettings],
    payment_amount,
    payment_crypto_currency: str,
) -> bool:
    if settings is None or not settings.is_active or not settings.auto_convert_enabled:
        return False

    if not settings.crypto_enabled(payment_crypto_currency):
        return False

    try:
        amount = Decimal(str(payment_amount))
    except (InvalidOperation, ValueError):
        return False

    if amount < Decimal(str(settings.conversion_threshold)):
        return False

    if amount < Decimal(str(settings.min_conversion_amount)):
        return False
    if amount > Decimal(str(settings.max_conversion_amount)):
        return False

    return True
