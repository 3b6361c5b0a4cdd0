"""
Late return penalty.
"""

from datetime import datetime
from decimal import Decimal
from typing import NamedTuple

from backend.app.core.timeutils import ceil_hours_between, ensure_utc
from backend.app.domain.pricing.money import Number, ZERO, to_decimal, to_money


class OvertimeResult(NamedTuple):
    is_late: bool
    late_hours: int
    fee: Decimal


def calculate_overtime_fee(
    scheduled_return: datetime,
    actual_return: datetime,
    overtime_rate_per_hour: Number,
) -> OvertimeResult:
    """Every started hour past the scheduled return is charged in full."""
    if ensure_utc(actual_return) <= ensure_utc(scheduled_return):
        return OvertimeResult(is_late=False, late_hours=0, fee=ZERO)

    late_hours = ceil_hours_between(scheduled_return, actual_return)
    fee = to_money(late_hours * to_decimal(overtime_rate_per_hour))

    return OvertimeResult(is_late=True, late_hours=late_hours, fee=fee)
