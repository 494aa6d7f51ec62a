"""
Merchant conversion settings.

Settings are upserted per merchant and soft-deleted by clearing
`is_active`. Every write is checked by `validate_settings` first, so an
invalid payload never reaches the session.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from conversion.errors import NotFound, ValidationError
from core.logging import BusinessEvents
from db.models import AccountType, ConversionSettings, CryptoCurrency, FiatCurrency

log = structlog.get_logger(__name__)

BANKING_FIELDS = (
    "account_type",
    "bank_name",
    "account_number",
    "routing_number",
    "account_holder_name",
    "swift_code",
    "iban",
)
REQUIRED_BANKING_FIELDS = BANKING_FIELDS[:5]

LIMIT_FIELDS = (
    "slippage_tolerance_percent",
    "min_conversion_amount",
    "max_conversion_amount",
    "conversion_delay_hours",
)

DEFAULTS = {
    "auto_convert_enabled": False,
    "conversion_threshold": Decimal("100"),
    "preferred_fiat_currency": FiatCurrency.USD.value,
    "banking_info": {},
    "limits": {
        "slippage_tolerance_percent": Decimal("0.5"),
        "min_conversion_amount": Decimal("10"),
        "max_conversion_amount": Decimal("10000"),
        "conversion_delay_hours": 0,
    },
    "supported_cryptos": [],
}

# Error paths use the names the frontend submits
_CAMEL = {
    "account_type": "accountType",
    "bank_name": "bankName",
    "account_number": "accountNumber",
    "routing_number": "routingNumber",
    "account_holder_name": "accountHolderName",
    "swift_code": "swiftCode",
    "iban": "iban",
    "slippage_tolerance_percent": "slippageTolerancePercent",
    "min_conversion_amount": "minConversionAmount",
    "max_conversion_amount": "maxConversionAmount",
    "conversion_delay_hours": "conversionDelayHours",
}


def _number(value) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def _enum_value(value) -> Any:
    return getattr(value, "value", value)


def validate_settings(state: dict[str, Any]) -> list[dict[str, str]]:
    """Return one entry per violated field; an empty list means valid."""
    errors: list[dict[str, str]] = []

    def fail(path: str, message: str):
        errors.append({"field": path, "message": message})

    if not isinstance(state.get("auto_convert_enabled"), bool):
        fail("autoConvertEnabled", "must be a boolean")
    auto_enabled = state.get("auto_convert_enabled") is True

    threshold = _number(state.get("conversion_threshold"))
    if threshold is None or threshold < 0:
        fail("conversionThreshold", "must be a non-negative number")

    currency = _enum_value(state.get("preferred_fiat_currency"))
    if currency not in {c.value for c in FiatCurrency}:
        fail("preferredFiatCurrency", "must be one of USD, EUR, GBP, CAD, AUD")

    banking = state.get("banking_info") or {}
    if auto_enabled:
        for name in REQUIRED_BANKING_FIELDS:
            if not str(banking.get(name) or "").strip():
                fail(f"bankingInfo.{_CAMEL[name]}", "required when auto-conversion is enabled")
        if currency != FiatCurrency.USD.value and not banking.get("swift_code"):
            fail("bankingInfo.swiftCode", "required for non-USD payouts")
        if currency == FiatCurrency.EUR.value and not banking.get("iban"):
            fail("bankingInfo.iban", "required for EUR payouts")
    account_type = banking.get("account_type")
    if account_type and _enum_value(account_type) not in {a.value for a in AccountType}:
        fail("bankingInfo.accountType", "must be checking, savings or business")

    limits = state.get("limits") or {}
    slippage = _number(limits.get("slippage_tolerance_percent"))
    if slippage is None or not Decimal(0) <= slippage <= Decimal(5):
        fail("limits.slippageTolerancePercent", "must be between 0 and 5")
    minimum = _number(limits.get("min_conversion_amount"))
    if minimum is None or minimum < 1:
        fail("limits.minConversionAmount", "must be at least 1")
    maximum = _number(limits.get("max_conversion_amount"))
    if maximum is None or maximum < 100:
        fail("limits.maxConversionAmount", "must be at least 100")
    if minimum is not None and maximum is not None and minimum > maximum:
        fail("limits.minConversionAmount", "must not exceed maxConversionAmount")
    delay = _number(limits.get("conversion_delay_hours"))
    if delay is None or delay != delay.to_integral_value() or not 0 <= delay <= 24:
        fail("limits.conversionDelayHours", "must be a whole number between 0 and 24")

    seen = set()
    supported = {c.value for c in CryptoCurrency}
    for index, entry in enumerate(state.get("supported_cryptos") or []):
        symbol = _enum_value(entry.get("symbol")) if isinstance(entry, dict) else None
        if symbol not in supported:
            fail(f"supportedCryptos[{index}].symbol", "unsupported crypto asset")
        elif symbol in seen:
            fail(f"supportedCryptos[{index}].symbol", "duplicate crypto asset")
        seen.add(symbol)

    return errors


def _state_of(record: Optional[ConversionSettings]) -> dict[str, Any]:
    if record is None:
        return {
            **DEFAULTS,
            "limits": dict(DEFAULTS["limits"]),
        }
    return {
        "auto_convert_enabled": record.auto_convert_enabled,
        "conversion_threshold": record.conversion_threshold,
        "preferred_fiat_currency": _enum_value(record.preferred_fiat_currency),
        "banking_info": dict(record.banking_info or {}),
        "limits": {name: getattr(record, name) for name in LIMIT_FIELDS},
        "supported_cryptos": list(record.supported_cryptos or []),
    }


def get_settings(
    db: Session, merchant_id: str, active_only: bool = False
) -> Optional[ConversionSettings]:
    query = select(ConversionSettings).filter(ConversionSettings.merchant_id == merchant_id)
    if active_only:
        query = query.filter(ConversionSettings.is_active.is_(True))
    return db.execute(query).scalars().first()


def upsert_settings(db: Session, merchant_id: str, patch: dict[str, Any]) -> ConversionSettings:
    """Merge `patch` over the stored (or default) settings, validate, then persist."""
    record = get_settings(db, merchant_id)
    state = _state_of(record)

    for key in ("auto_convert_enabled", "conversion_threshold", "preferred_fiat_currency"):
        if key in patch:
            state[key] = patch[key]
    if "banking_info" in patch:
        banking = patch["banking_info"] or {}
        state["banking_info"] = {
            name: _enum_value(banking.get(name))
            for name in BANKING_FIELDS
            if banking.get(name) not in (None, "")
        }
    if "limits" in patch and patch["limits"]:
        state["limits"].update(
            {k: v for k, v in patch["limits"].items() if k in LIMIT_FIELDS and v is not None}
        )
    if "supported_cryptos" in patch:
        state["supported_cryptos"] = [
            {"symbol": _enum_value(entry.get("symbol")), "enabled": entry.get("enabled", True)}
            if isinstance(entry, dict)
            else entry
            for entry in (patch["supported_cryptos"] or [])
        ]

    errors = validate_settings(state)
    if errors:
        raise ValidationError(errors)

    if record is None:
        record = ConversionSettings(merchant_id=merchant_id)
        db.add(record)

    record.auto_convert_enabled = state["auto_convert_enabled"]
    record.conversion_threshold = Decimal(str(state["conversion_threshold"]))
    record.preferred_fiat_currency = FiatCurrency(state["preferred_fiat_currency"])
    record.banking_info = state["banking_info"]
    record.slippage_tolerance_percent = Decimal(str(state["limits"]["slippage_tolerance_percent"]))
    record.min_conversion_amount = Decimal(str(state["limits"]["min_conversion_amount"]))
    record.max_conversion_amount = Decimal(str(state["limits"]["max_conversion_amount"]))
    record.conversion_delay_hours = int(Decimal(str(state["limits"]["conversion_delay_hours"])))
    record.supported_cryptos = state["supported_cryptos"]
    record.is_active = True

    db.commit()
    db.refresh(record)

    log.info(
        BusinessEvents.SETTINGS_UPDATED,
        merchant_id=merchant_id,
        auto_convert_enabled=record.auto_convert_enabled,
        preferred_fiat_currency=record.preferred_fiat_currency.value,
    )
    return record


def toggle_auto_convert(db: Session, merchant_id: str, enabled: bool) -> ConversionSettings:
    record = get_settings(db, merchant_id)
    if record is None:
        raise NotFound("Conversion settings not found")

    if enabled:
        # Turning auto-conversion on makes the banking rules apply
        state = _state_of(record)
        state["auto_convert_enabled"] = True
        errors = validate_settings(state)
        if errors:
            raise ValidationError(errors)

    record.auto_convert_enabled = enabled
    db.commit()
    db.refresh(record)

    log.info(BusinessEvents.SETTINGS_TOGGLED, merchant_id=merchant_id, enabled=enabled)
    return record


def deactivate_settings(db: Session, merchant_id: str) -> Optional[ConversionSettings]:
    """Soft delete. In-flight conversions are unaffected."""
    record = get_settings(db, merchant_id)
    if record is None:
        return None
    record.is_active = False
    db.commit()
    db.refresh(record)

    log.info(BusinessEvents.SETTINGS_DEACTIVATED, merchant_id=merchant_id)
    return record
