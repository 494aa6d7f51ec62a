"""Conversion history and aggregate statistics for a merchant."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, desc, func, select
from sqlalchemy.orm import Session

from db.models import ConversionStatus, ConversionTransaction, as_utc, utcnow

CENTS = Decimal("0.01")
DEFAULT_PAGE_SIZE = 20
STATS_PERIODS = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}
DEFAULT_STATS_PERIOD = "30d"


@dataclass
class HistoryPage:
    items: list[ConversionTransaction]
    current: int
    pages: int
    total: int

    @property
    def pagination(self) -> dict[str, int]:
        return {"current": self.current, "pages": self.pages, "total": self.total}


@dataclass
class ConversionStats:
    total_conversions: int = 0
    total_fiat_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    total_fees: Decimal = field(default_factory=lambda: Decimal("0"))
    completed_conversions: int = 0
    failed_conversions: int = 0
    avg_processing_time_ms: float = 0.0


def _scoped_query(
    merchant_id: str,
    status: Optional[ConversionStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    filters = [ConversionTransaction.merchant_id == merchant_id]
    if status is not None:
        filters.append(ConversionTransaction.status == status)
    if start_date is not None:
        filters.append(ConversionTransaction.initiated_at >= start_date)
    if end_date is not None:
        filters.append(ConversionTransaction.initiated_at <= end_date)
    return filters


def list_history(
    db: Session,
    merchant_id: str,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    status: Optional[ConversionStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> HistoryPage:
    """Newest-first page of a merchant's conversions."""
    page = max(page, 1)
    page_size = max(page_size, 1)
    filters = _scoped_query(merchant_id, status, start_date, end_date)

    total = db.execute(
        select(func.count(ConversionTransaction.id)).filter(*filters)
    ).scalar_one()
    items = (
        db.execute(
            select(ConversionTransaction)
            .filter(*filters)
            .order_by(desc(ConversionTransaction.initiated_at), desc(ConversionTransaction.id))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        .scalars()
        .all()
    )
    return HistoryPage(
        items=list(items),
        current=page,
        pages=math.ceil(total / page_size),
        total=total,
    )


def get_stats(
    db: Session,
    merchant_id: str,
    period: str = DEFAULT_STATS_PERIOD,
    now: Optional[datetime] = None,
) -> ConversionStats:
    window = STATS_PERIODS.get(period, STATS_PERIODS[DEFAULT_STATS_PERIOD])
    since = (now or utcnow()) - window
    filters = _scoped_query(merchant_id, start_date=since)

    row = db.execute(
        select(
            func.count(ConversionTransaction.id),
            func.coalesce(func.sum(ConversionTransaction.fiat_amount), 0),
            func.coalesce(func.sum(ConversionTransaction.fee_total), 0),
            func.coalesce(
                func.sum(
                    case((ConversionTransaction.status == ConversionStatus.completed, 1), else_=0)
                ),
                0,
            ),
            func.coalesce(
                func.sum(
                    case((ConversionTransaction.status == ConversionStatus.failed, 1), else_=0)
                ),
                0,
            ),
        ).filter(*filters)
    ).one()

    # Date arithmetic differs per backend, so durations are computed here
    spans = db.execute(
        select(ConversionTransaction.initiated_at, ConversionTransaction.completed_at).filter(
            *filters, ConversionTransaction.completed_at.is_not(None)
        )
    ).all()
    durations = [
        (as_utc(completed) - as_utc(initiated)).total_seconds() * 1000
        for initiated, completed in spans
    ]

    total_count, fiat_sum, fee_sum, completed, failed = row
    return ConversionStats(
        total_conversions=int(total_count),
        total_fiat_amount=Decimal(str(fiat_sum)).quantize(CENTS),
        total_fees=Decimal(str(fee_sum)).quantize(CENTS),
        completed_conversions=int(completed),
        failed_conversions=int(failed),
        avg_processing_time_ms=sum(durations) / len(durations) if durations else 0.0,
    )
