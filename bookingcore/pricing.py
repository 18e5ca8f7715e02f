"""Reservation pricing: every started hour is billed at the room's hourly rate."""
from datetime import datetime, timedelta
from decimal import Decimal

_HOUR = timedelta(hours=1)
_CENTS = Decimal("0.01")


def billable_hours(start: datetime, end: datetime) -> int:
    """Whole hours covering ``[start, end)``, partial hours rounded up."""

    # timedelta floor division is exact, so negate twice for a ceiling
    return -(-(end - start) // _HOUR)


def calculate_total_price(hourly_rate: Decimal | int | str, start: datetime, end: datetime) -> Decimal:
    return (Decimal(billable_hours(start, end)) * Decimal(hourly_rate)).quantize(_CENTS)
