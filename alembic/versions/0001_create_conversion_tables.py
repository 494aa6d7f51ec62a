"""create_conversion_tables

Revision ID: 0001_create_conversion_tables
Revises:
Create Date: 2025-06-01 12:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_create_conversion_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

crypto_currency = sa.Enum("USDC", "USDT", "DAI", "ETH", "BTC", name="cryptocurrency")
fiat_currency = sa.Enum("USD", "EUR", "GBP", "CAD", "AUD", name="fiatcurrency")
payment_status = sa.Enum("pending", "completed", "failed", name="paymentstatus")
conversion_status = sa.Enum(
    "pending", "processing", "completed", "failed", "cancelled", name="conversionstatus"
)
conversion_method = sa.Enum("automatic", "manual", "scheduled", name="conversionmethod")
conversion_provider = sa.Enum(
    "coinbase", "kraken", "binance", "internal", name="conversionprovider"
)
payout_status = sa.Enum(
    "pending", "processing", "completed", "failed", "returned", name="payoutstatus"
)
audit_action = sa.Enum(
    "settings_updated",
    "settings_toggled",
    "settings_deactivated",
    "conversion_requested",
    "conversion_cancelled",
    "estimate_requested",
    "payment_event",
    name="auditaction",
)


def upgrade() -> None:
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("merchant_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("crypto_amount", sa.String(78), nullable=False),
        sa.Column("currency", sa.String(10), nullable=False),
        sa.Column("status", payment_status, nullable=False),
        sa.Column("customer_email", sa.String(255)),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_payments_merchant_id", "payments", ["merchant_id"])

    op.create_table(
        "conversion_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("merchant_id", sa.String(64), nullable=False),
        sa.Column("auto_convert_enabled", sa.Boolean(), nullable=False),
        sa.Column("conversion_threshold", sa.Numeric(18, 2), nullable=False),
        sa.Column("preferred_fiat_currency", fiat_currency, nullable=False),
        sa.Column("banking_info", sa.JSON(), nullable=False),
        sa.Column("slippage_tolerance_percent", sa.Numeric(5, 2), nullable=False),
        sa.Column("min_conversion_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("max_conversion_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("conversion_delay_hours", sa.Integer(), nullable=False),
        sa.Column("supported_cryptos", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_index(
        "ix_conversion_settings_merchant_id",
        "conversion_settings",
        ["merchant_id"],
        unique=True,
    )
    op.create_index(
        "ix_conversion_settings_auto",
        "conversion_settings",
        ["auto_convert_enabled", "is_active"],
    )

    op.create_table(
        "conversion_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("conversion_id", sa.String(64), nullable=False),
        sa.Column("merchant_id", sa.String(64), nullable=False),
        sa.Column(
            "original_payment_id",
            sa.Integer(),
            sa.ForeignKey("payments.id"),
            nullable=False,
        ),
        sa.Column("crypto_amount", sa.String(78), nullable=False),
        sa.Column("crypto_currency", crypto_currency, nullable=False),
        sa.Column("fiat_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("fiat_currency", fiat_currency, nullable=False),
        sa.Column("exchange_rate", sa.Numeric(28, 10), nullable=False),
        sa.Column("status", conversion_status, nullable=False),
        sa.Column("conversion_method", conversion_method, nullable=False),
        sa.Column("conversion_provider", conversion_provider, nullable=False),
        sa.Column("fee_conversion", sa.Numeric(18, 2), nullable=False),
        sa.Column("fee_network", sa.Numeric(18, 2), nullable=False),
        sa.Column("fee_banking", sa.Numeric(18, 2), nullable=False),
        sa.Column("fee_total", sa.Numeric(18, 2), nullable=False),
        sa.Column("banking_details", sa.JSON(), nullable=False),
        sa.Column("payout_id", sa.String(128)),
        sa.Column("payout_status", payout_status),
        sa.Column("estimated_arrival", sa.DateTime(timezone=True)),
        sa.Column("actual_arrival", sa.DateTime(timezone=True)),
        sa.Column("tracking_number", sa.String(128)),
        sa.Column("initiated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("failed_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("error_code", sa.String(64)),
        sa.Column("error_message", sa.Text()),
        sa.Column("provider_error", sa.Text()),
    )
    op.create_index(
        "ix_conversion_transactions_conversion_id",
        "conversion_transactions",
        ["conversion_id"],
        unique=True,
    )
    op.create_index(
        "ix_conversion_transactions_original_payment_id",
        "conversion_transactions",
        ["original_payment_id"],
    )
    op.create_index(
        "ix_conversions_merchant_initiated",
        "conversion_transactions",
        ["merchant_id", "initiated_at"],
    )
    op.create_index("ix_conversions_status", "conversion_transactions", ["status"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("merchant_id", sa.String(64)),
        sa.Column("action", audit_action),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_merchant_id", "audit_logs", ["merchant_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("conversion_transactions")
    op.drop_table("conversion_settings")
    op.drop_table("payments")

    bind = op.get_bind()
    for enum in (
        audit_action,
        payout_status,
        conversion_provider,
        conversion_method,
        conversion_status,
        payment_status,
        fiat_currency,
        crypto_currency,
    ):
        enum.drop(bind, checkfirst=True)
