"""Tests for conversion history paging and statistics."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from conversion.history import get_stats, list_history
from db.models import (
    ConversionMethod,
    ConversionProvider,
    ConversionStatus,
    ConversionTransaction,
    CryptoCurrency,
    FiatCurrency,
    Payment,
    PaymentStatus,
)
from tests.conftest import MERCHANT_ID, OTHER_MERCHANT_ID

NOW = datetime(2025, 6, 30, 12, 0, tzinfo=UTC)


@pytest.fixture
def payment(test_db_session):
    payment = Payment(
        merchant_id=MERCHANT_ID,
        amount=Decimal("100"),
        crypto_amount="100",
        currency="USDC",
        status=PaymentStatus.completed,
    )
    test_db_session.add(payment)
    test_db_session.commit()
    return payment


def add_conversion(
    db,
    payment,
    index,
    initiated_at,
    status=ConversionStatus.completed,
    merchant_id=MERCHANT_ID,
    fiat_amount="100.00",
    fee_total="2.75",
    duration=None,
):
    record = ConversionTransaction(
        conversion_id=f"conv_test_{merchant_id}_{index}",
        merchant_id=merchant_id,
        original_payment_id=payment.id,
        crypto_amount=fiat_amount,
        crypto_currency=CryptoCurrency.USDC,
        fiat_amount=Decimal(fiat_amount),
        fiat_currency=FiatCurrency.USD,
        exchange_rate=Decimal("1"),
        status=status,
        conversion_method=ConversionMethod.automatic,
        conversion_provider=ConversionProvider.coinbase,
        fee_total=Decimal(fee_total),
        banking_details={},
        initiated_at=initiated_at,
    )
    if status == ConversionStatus.completed:
        record.completed_at = initiated_at + (duration or timedelta(seconds=2))
    elif status == ConversionStatus.failed:
        record.failed_at = initiated_at + timedelta(seconds=1)
    db.add(record)
    db.commit()
    return record


def test_history_is_newest_first_and_paged(test_db_session, payment):
    for i in range(25):
        add_conversion(test_db_session, payment, i, NOW - timedelta(hours=i))

    first = list_history(test_db_session, MERCHANT_ID, page=1, page_size=10)
    last = list_history(test_db_session, MERCHANT_ID, page=3, page_size=10)

    assert first.pagination == {"current": 1, "pages": 3, "total": 25}
    assert [r.conversion_id for r in first.items][:2] == [
        f"conv_test_{MERCHANT_ID}_0",
        f"conv_test_{MERCHANT_ID}_1",
    ]
    assert len(last.items) == 5
    assert last.items[-1].conversion_id == f"conv_test_{MERCHANT_ID}_24"


def test_history_is_scoped_to_merchant(test_db_session, payment):
    add_conversion(test_db_session, payment, 1, NOW)
    add_conversion(test_db_session, payment, 2, NOW, merchant_id=OTHER_MERCHANT_ID)

    result = list_history(test_db_session, MERCHANT_ID)

    assert result.total == 1
    assert all(r.merchant_id == MERCHANT_ID for r in result.items)


def test_history_filters_by_status(test_db_session, payment):
    add_conversion(test_db_session, payment, 1, NOW)
    add_conversion(test_db_session, payment, 2, NOW, status=ConversionStatus.failed)

    result = list_history(test_db_session, MERCHANT_ID, status=ConversionStatus.failed)

    assert result.total == 1
    assert result.items[0].status == ConversionStatus.failed


def test_history_filters_by_date_range(test_db_session, payment):
    add_conversion(test_db_session, payment, 1, NOW - timedelta(days=10))
    add_conversion(test_db_session, payment, 2, NOW - timedelta(days=5))
    add_conversion(test_db_session, payment, 3, NOW)

    result = list_history(
        test_db_session,
        MERCHANT_ID,
        start_date=NOW - timedelta(days=7),
        end_date=NOW - timedelta(days=1),
    )

    assert [r.conversion_id for r in result.items] == [f"conv_test_{MERCHANT_ID}_2"]


def test_empty_history(test_db_session):
    result = list_history(test_db_session, MERCHANT_ID)

    assert result.items == []
    assert result.pagination == {"current": 1, "pages": 0, "total": 0}


def test_stats_aggregate_within_period(test_db_session, payment):
    add_conversion(
        test_db_session, payment, 1, NOW - timedelta(days=1),
        fiat_amount="100.00", fee_total="2.75", duration=timedelta(seconds=2),
    )
    add_conversion(
        test_db_session, payment, 2, NOW - timedelta(days=2),
        fiat_amount="300.00", fee_total="4.25", duration=timedelta(seconds=4),
    )
    add_conversion(
        test_db_session, payment, 3, NOW - timedelta(days=3),
        status=ConversionStatus.failed, fiat_amount="50.00", fee_total="3.00",
    )
    # Outside the 7 day window
    add_conversion(test_db_session, payment, 4, NOW - timedelta(days=20))

    stats = get_stats(test_db_session, MERCHANT_ID, "7d", now=NOW)

    assert stats.total_conversions == 3
    assert stats.total_fiat_amount == Decimal("450.00")
    assert stats.total_fees == Decimal("10.00")
    assert stats.completed_conversions == 2
    assert stats.failed_conversions == 1
    assert stats.avg_processing_time_ms == pytest.approx(3000.0)


def test_stats_period_windows(test_db_session, payment):
    add_conversion(test_db_session, payment, 1, NOW - timedelta(days=20))
    add_conversion(test_db_session, payment, 2, NOW - timedelta(days=60))

    assert get_stats(test_db_session, MERCHANT_ID, "7d", now=NOW).total_conversions == 0
    assert get_stats(test_db_session, MERCHANT_ID, "30d", now=NOW).total_conversions == 1
    assert get_stats(test_db_session, MERCHANT_ID, "90d", now=NOW).total_conversions == 2


def test_unknown_period_defaults_to_30_days(test_db_session, payment):
    add_conversion(test_db_session, payment, 1, NOW - timedelta(days=20))
    add_conversion(test_db_session, payment, 2, NOW - timedelta(days=60))

    stats = get_stats(test_db_session, MERCHANT_ID, "1y", now=NOW)

    assert stats.total_conversions == 1


def test_stats_with_no_conversions(test_db_session):
    stats = get_stats(test_db_session, MERCHANT_ID, now=NOW)

    assert stats.total_conversions == 0
    assert stats.total_fiat_amount == Decimal("0.00")
    assert stats.avg_processing_time_ms == 0.0
