"""Tests for merchant conversion settings persistence and validation."""

from decimal import Decimal

import pytest

from conversion import settings_store
from conversion.errors import NotFound, ValidationError
from conversion.settings_store import DEFAULTS, validate_settings
from db.models import FiatCurrency
from tests.conftest import MERCHANT_ID, US_BANKING


def valid_state(**overrides):
    state = {
        **DEFAULTS,
        "limits": dict(DEFAULTS["limits"]),
        "banking_info": dict(US_BANKING),
    }
    state.update(overrides)
    return state


def fields(errors):
    return {e["field"] for e in errors}


# validate_settings


def test_defaults_are_valid():
    assert validate_settings(valid_state()) == []


def test_auto_enabled_requires_banking_fields():
    errors = validate_settings(valid_state(auto_convert_enabled=True, banking_info={}))

    assert fields(errors) == {
        "bankingInfo.accountType",
        "bankingInfo.bankName",
        "bankingInfo.accountNumber",
        "bankingInfo.routingNumber",
        "bankingInfo.accountHolderName",
    }


def test_banking_fields_optional_when_auto_disabled():
    assert validate_settings(valid_state(banking_info={})) == []


def test_non_usd_requires_swift():
    errors = validate_settings(
        valid_state(auto_convert_enabled=True, preferred_fiat_currency="GBP")
    )

    assert fields(errors) == {"bankingInfo.swiftCode"}


def test_eur_requires_swift_and_iban():
    errors = validate_settings(
        valid_state(auto_convert_enabled=True, preferred_fiat_currency="EUR")
    )

    assert fields(errors) == {"bankingInfo.swiftCode", "bankingInfo.iban"}


def test_eur_with_swift_and_iban_is_valid():
    banking = {**US_BANKING, "swift_code": "DEUTDEFF", "iban": "DE89370400440532013000"}
    state = valid_state(
        auto_convert_enabled=True, preferred_fiat_currency="EUR", banking_info=banking
    )

    assert validate_settings(state) == []


def test_unknown_fiat_currency():
    errors = validate_settings(valid_state(preferred_fiat_currency="JPY"))
    assert fields(errors) == {"preferredFiatCurrency"}


def test_negative_threshold():
    errors = validate_settings(valid_state(conversion_threshold=Decimal("-1")))
    assert fields(errors) == {"conversionThreshold"}


@pytest.mark.parametrize(
    "limit,value,field",
    [
        ("slippage_tolerance_percent", Decimal("5.1"), "limits.slippageTolerancePercent"),
        ("slippage_tolerance_percent", Decimal("-0.1"), "limits.slippageTolerancePercent"),
        ("min_conversion_amount", Decimal("0.5"), "limits.minConversionAmount"),
        ("max_conversion_amount", Decimal("99"), "limits.maxConversionAmount"),
        ("conversion_delay_hours", 25, "limits.conversionDelayHours"),
        ("conversion_delay_hours", Decimal("1.5"), "limits.conversionDelayHours"),
    ],
)
def test_limit_bounds(limit, value, field):
    state = valid_state()
    state["limits"][limit] = value

    assert field in fields(validate_settings(state))


def test_min_above_max():
    state = valid_state()
    state["limits"]["min_conversion_amount"] = Decimal("5000")
    state["limits"]["max_conversion_amount"] = Decimal("1000")

    errors = validate_settings(state)

    assert fields(errors) == {"limits.minConversionAmount"}


def test_limit_edges_are_valid():
    state = valid_state()
    state["limits"].update(
        slippage_tolerance_percent=Decimal("5"),
        min_conversion_amount=Decimal("1"),
        max_conversion_amount=Decimal("100"),
        conversion_delay_hours=24,
    )

    assert validate_settings(state) == []


def test_unsupported_and_duplicate_cryptos():
    state = valid_state(
        supported_cryptos=[
            {"symbol": "USDC", "enabled": True},
            {"symbol": "DOGE", "enabled": True},
            {"symbol": "USDC", "enabled": False},
        ]
    )

    errors = validate_settings(state)

    assert fields(errors) == {"supportedCryptos[1].symbol", "supportedCryptos[2].symbol"}


# Persistence


def test_upsert_creates_settings_with_defaults(test_db_session):
    record = settings_store.upsert_settings(
        test_db_session, MERCHANT_ID, {"conversion_threshold": Decimal("250")}
    )

    assert record.id is not None
    assert record.conversion_threshold == Decimal("250")
    assert record.auto_convert_enabled is False
    assert record.preferred_fiat_currency == FiatCurrency.USD
    assert record.min_conversion_amount == Decimal("10")
    assert record.max_conversion_amount == Decimal("10000")
    assert record.is_active is True


def test_upsert_merges_partial_patch(test_db_session):
    settings_store.upsert_settings(
        test_db_session,
        MERCHANT_ID,
        {
            "auto_convert_enabled": True,
            "banking_info": US_BANKING,
            "supported_cryptos": [{"symbol": "USDC", "enabled": True}],
        },
    )

    record = settings_store.upsert_settings(
        test_db_session,
        MERCHANT_ID,
        {"limits": {"max_conversion_amount": Decimal("5000")}},
    )

    assert record.auto_convert_enabled is True
    assert record.banking_info["bank_name"] == US_BANKING["bank_name"]
    assert record.max_conversion_amount == Decimal("5000")
    assert record.min_conversion_amount == Decimal("10")
    assert record.supported_cryptos == [{"symbol": "USDC", "enabled": True}]


def test_invalid_patch_is_not_persisted(test_db_session):
    settings_store.upsert_settings(test_db_session, MERCHANT_ID, {})

    with pytest.raises(ValidationError) as exc:
        settings_store.upsert_settings(
            test_db_session, MERCHANT_ID, {"auto_convert_enabled": True}
        )

    assert "bankingInfo.bankName" in fields(exc.value.errors)
    test_db_session.expire_all()
    record = settings_store.get_settings(test_db_session, MERCHANT_ID)
    assert record.auto_convert_enabled is False


def test_upsert_reactivates_soft_deleted_settings(test_db_session):
    settings_store.upsert_settings(test_db_session, MERCHANT_ID, {})
    settings_store.deactivate_settings(test_db_session, MERCHANT_ID)

    record = settings_store.upsert_settings(
        test_db_session, MERCHANT_ID, {"conversion_threshold": 50}
    )

    assert record.is_active is True


def test_toggle_requires_existing_settings(test_db_session):
    with pytest.raises(NotFound):
        settings_store.toggle_auto_convert(test_db_session, MERCHANT_ID, True)


def test_toggle_on_validates_banking(test_db_session):
    settings_store.upsert_settings(test_db_session, MERCHANT_ID, {})

    with pytest.raises(ValidationError):
        settings_store.toggle_auto_convert(test_db_session, MERCHANT_ID, True)


def test_toggle_round_trip(test_db_session):
    settings_store.upsert_settings(
        test_db_session, MERCHANT_ID, {"banking_info": US_BANKING}
    )

    record = settings_store.toggle_auto_convert(test_db_session, MERCHANT_ID, True)
    assert record.auto_convert_enabled is True

    record = settings_store.toggle_auto_convert(test_db_session, MERCHANT_ID, False)
    assert record.auto_convert_enabled is False


def test_deactivate_hides_from_active_lookup(test_db_session):
    settings_store.upsert_settings(test_db_session, MERCHANT_ID, {})

    record = settings_store.deactivate_settings(test_db_session, MERCHANT_ID)

    assert record.is_active is False
    assert settings_store.get_settings(test_db_session, MERCHANT_ID) is not None
    assert (
        settings_store.get_settings(test_db_session, MERCHANT_ID, active_only=True)
        is None
    )


def test_deactivate_missing_settings(test_db_session):
    assert settings_store.deactivate_settings(test_db_session, "nobody") is None
