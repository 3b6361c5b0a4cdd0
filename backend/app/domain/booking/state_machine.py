"""
Booking lifecycle transitions.

pending -> confirmed -> active -> completed; pending|confirmed may also end
in cancelled or rejected.
"""

from backend.app.core.exceptions import InvalidStateTransitionError
from backend.app.models.billing_enums import BookingStatus
from backend.app.models.booking import Booking

BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.REJECTED},
    BookingStatus.CONFIRMED: {BookingStatus.ACTIVE, BookingStatus.CANCELLED, BookingStatus.REJECTED},
    BookingStatus.ACTIVE: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.REJECTED: set(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in BOOKING_TRANSITIONS.items() if not targets
)


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in BOOKING_TRANSITIONS.get(current, set())


def ensure_transition(booking: Booking, target: BookingStatus) -> None:
    """Raise InvalidStateTransitionError unless booking may move to target."""
    if not can_transition(booking.status, target):
        raise InvalidStateTransitionError("Booking", booking.status.value, target.value)


def is_terminal(booking: Booking) -> bool:
    return booking.status in TERMINAL_STATUSES
