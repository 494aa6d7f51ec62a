from decimal import Decimal

# (minimum amount, score), highest band first
AMOUNT_BANDS = (
    (Decimal("100000"), 90),
    (Decimal("50000"), 60),
    (Decimal("10000"), 30),
    (Decimal("1000"), 10),
)


def calculate_risk_score(amount, customer_info: dict | None = None) -> int:
    """Score 0-100 from payment size and how much we know about the customer."""
    customer_info = customer_info or {}
    value = Decimal(str(amount))

    score = next((points for floor, points in AMOUNT_BANDS if value >= floor), 0)

    if not customer_info.get("name"):
        score += 15
    if not customer_info.get("phone"):
        score += 10
    # Only penalise an email that was supplied but left blank
    if "email" in customer_info and not customer_info["email"]:
        score += 5

    return min(score, 100)
