"""Tests for the auto-conversion eligibility predicate."""

from decimal import Decimal

from conversion.policy import should_auto_convert
from db.models import ConversionSettings, FiatCurrency


def make_settings(**overrides):
    values = dict(
        merchant_id="merchant_policy",
        auto_convert_enabled=True,
        conversion_threshold=Decimal("100"),
        preferred_fiat_currency=FiatCurrency.USD,
        banking_info={},
        min_conversion_amount=Decimal("10"),
        max_conversion_amount=Decimal("10000"),
        supported_cryptos=[
            {"symbol": "USDC", "enabled": True},
            {"symbol": "ETH", "enabled": False},
        ],
        is_active=True,
    )
    values.update(overrides)
    return ConversionSettings(**values)


def test_eligible_payment_converts():
    assert should_auto_convert(make_settings(), Decimal("500"), "USDC") is True


def test_no_settings():
    assert should_auto_convert(None, Decimal("500"), "USDC") is False


def test_inactive_settings():
    settings = make_settings(is_active=False)
    assert should_auto_convert(settings, Decimal("500"), "USDC") is False


def test_auto_convert_disabled():
    settings = make_settings(auto_convert_enabled=False)
    assert should_auto_convert(settings, Decimal("500"), "USDC") is False


def test_disabled_crypto():
    assert should_auto_convert(make_settings(), Decimal("500"), "ETH") is False


def test_unlisted_crypto():
    assert should_auto_convert(make_settings(), Decimal("500"), "BTC") is False


def test_below_threshold():
    assert should_auto_convert(make_settings(), Decimal("50"), "USDC") is False


def test_threshold_is_inclusive():
    assert should_auto_convert(make_settings(), Decimal("100"), "USDC") is True


def test_below_minimum():
    settings = make_settings(conversion_threshold=Decimal("0"))
    assert should_auto_convert(settings, Decimal("5"), "USDC") is False


def test_above_maximum():
    assert should_auto_convert(make_settings(), Decimal("20000"), "USDC") is False


def test_maximum_is_inclusive():
    assert should_auto_convert(make_settings(), Decimal("10000"), "USDC") is True


def test_non_numeric_amount():
    assert should_auto_convert(make_settings(), "not-a-number", "USDC") is False


def test_string_amount_accepted():
    assert should_auto_convert(make_settings(), "250.00", "USDC") is True


def test_threshold_50_scenario():
    settings = make_settings(
        conversion_threshold=Decimal("50"),
        supported_cryptos=[{"symbol": "USDC", "enabled": True}],
    )

    assert should_auto_convert(settings, Decimal("100"), "USDC") is True
    assert should_auto_convert(settings, Decimal("5"), "USDC") is False
