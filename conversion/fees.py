"""Conversion fee schedule."""

from dataclasses import dataclass
from decimal import Decimal

from conversion.rates import round_money, to_decimal

CONVERSION_FEE_PERCENT = Decimal("0.5")
# Flat amount, charged as-is whatever the payout currency
NETWORK_FEE = Decimal("2.50")
BANKING_FEE_DOMESTIC = Decimal("0.25")
BANKING_FEE_INTERNATIONAL = Decimal("1.50")


@dataclass(frozen=True)
class FeeBreakdown:
    conversion: Decimal
    network: Decimal
    banking: Decimal
    total: Decimal

    def as_dict(self) -> dict[str, Decimal]:
        return {
            "conversion": self.conversion,
            "network": self.network,
            "banking": self.banking,
            "total": self.total,
        }


def compute_fees(fiat_amount, crypto_currency: str, fiat_currency: str) -> FeeBreakdown:
    amount = to_decimal(fiat_amount, field="fiatAmount")
    conversion = round_money(amount * CONVERSION_FEE_PERCENT / Decimal(100))
    network = round_money(NETWORK_FEE)
    banking = round_money(
        BANKING_FEE_DOMESTIC if fiat_currency == "USD" else BANKING_FEE_INTERNATIONAL
    )
    return FeeBreakdown(
        conversion=conversion,
        network=network,
        banking=banking,
        total=round_money(conversion + network + banking),
    )
