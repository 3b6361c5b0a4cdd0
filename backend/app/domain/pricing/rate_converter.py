"""
Hourly/daily rate conversion.

Shared by the car rental charge and the driver fee.
"""

from decimal import Decimal
from typing import NamedTuple, Optional

from backend.app.core.config import settings
from backend.app.domain.pricing.money import Number, to_decimal, to_money


class RateConversion(NamedTuple):
    days: int
    remaining_hours: int
    amount: Decimal


def convert(
    total_hours: int,
    hourly_rate: Number,
    daily_rate: Number,
    threshold: Optional[int] = None,
) -> RateConversion:
    """
    Split a duration into billable days and leftover hours.

    Every full block of `threshold` hours is billed at the daily rate, the
    remainder at the hourly rate. A missing or zero threshold falls back to
    the configured default. Negative durations are a caller error.
    """
    if not threshold:
        threshold = settings.default_daily_hour_threshold

    days, remaining_hours = divmod(total_hours, threshold)
    amount = days * to_decimal(daily_rate) + remaining_hours * to_decimal(hourly_rate)

    return RateConversion(days=days, remaining_hours=remaining_hours, amount=to_money(amount))
