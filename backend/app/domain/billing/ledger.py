"""
Settlement Ledger.

The booking's charge row is the ledger. Every mutation recomputes the
balance and re-checks the invariant

    balance_due == total_amount - amount_paid - deposit_amount

before returning. Nothing here flushes or commits; callers own the
transaction that wraps the gateway call and the ledger update.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from backend.app.core.exceptions import ConsistencyError, InvalidStateTransitionError
from backend.app.domain.pricing.money import ZERO, Number, to_decimal, to_money
from backend.app.models.billing_enums import PaymentStatus
from backend.app.models.booking_charge import BookingCharge
from backend.app.models.payment import Payment
from backend.app.schemas.pricing import Breakdown

logger = logging.getLogger(__name__)

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.CANCELLED: set(),
    PaymentStatus.REFUNDED: set(),
}


def ensure_payment_transition(payment: Payment, target: PaymentStatus) -> None:
    if target not in PAYMENT_TRANSITIONS.get(payment.status, set()):
        raise InvalidStateTransitionError("Payment", payment.status.value, target.value)


class SettlementLedger:

    @staticmethod
    def charge_from_breakdown(booking_id: int, breakdown: Breakdown) -> BookingCharge:
        """Build the ledger row for a freshly created booking."""
        charge = BookingCharge(
            booking_id=booking_id,
            total_hours=breakdown.rental.total_hours,
            total_days=breakdown.rental.total_days,
            hourly_rate=breakdown.rental.hourly_rate,
            daily_rate=breakdown.rental.daily_rate,
            base_amount=breakdown.rental.base_amount,
            delivery_fee=breakdown.delivery.fee,
            driver_fee_amount=breakdown.driver.fee_amount,
            insurance_fee=breakdown.insurance_fee,
            extra_fee=breakdown.extra_fee,
            extra_fee_details=[],
            discount_amount=breakdown.discount.discount_amount,
            subtotal=breakdown.subtotal,
            vat_rate=breakdown.vat_rate,
            vat_amount=breakdown.vat_amount,
            total_amount=breakdown.total_amount,
            deposit_amount=breakdown.deposit_amount,
            amount_paid=ZERO,
            refund_amount=ZERO,
        )
        SettlementLedger.recompute_balance(charge)
        SettlementLedger.assert_consistent(charge)
        return charge

    @staticmethod
    def recompute_balance(charge: BookingCharge) -> Decimal:
        charge.balance_due = to_money(
            to_decimal(charge.total_amount)
            - to_decimal(charge.amount_paid or 0)
            - to_decimal(charge.deposit_amount or 0)
        )
        return charge.balance_due

    @staticmethod
    def assert_consistent(charge: BookingCharge) -> None:
        """
        Raises:
            ConsistencyError: If the balance or paid/refunded amounts are off
        """
        expected = to_money(
            to_decimal(charge.total_amount)
            - to_decimal(charge.amount_paid or 0)
            - to_decimal(charge.deposit_amount or 0)
        )
        details = {
            "booking_id": charge.booking_id,
            "total_amount": str(charge.total_amount),
            "amount_paid": str(charge.amount_paid),
            "deposit_amount": str(charge.deposit_amount),
            "balance_due": str(charge.balance_due),
            "refund_amount": str(charge.refund_amount),
        }
        if to_money(charge.balance_due) != expected:
            logger.error("Ledger balance mismatch for booking %s", charge.booking_id, extra=details)
            raise ConsistencyError("Ledger balance does not match charges and payments", details=details)
        if to_decimal(charge.amount_paid or 0) < ZERO or to_decimal(charge.refund_amount or 0) < ZERO:
            logger.error("Negative ledger amount for booking %s", charge.booking_id, extra=details)
            raise ConsistencyError("Ledger amounts cannot be negative", details=details)

    @staticmethod
    def apply_capture(charge: BookingCharge, amount: Number) -> BookingCharge:
        """Credit a confirmed gateway capture."""
        amount = to_money(amount)
        if amount <= ZERO:
            raise ConsistencyError(
                "Captured amount must be positive",
                details={"booking_id": charge.booking_id, "amount": str(amount)},
            )

        charge.amount_paid = to_money(to_decimal(charge.amount_paid or 0) + amount)
        SettlementLedger.recompute_balance(charge)
        SettlementLedger.assert_consistent(charge)
        return charge

    @staticmethod
    def apply_refund(charge: BookingCharge, amount: Number) -> BookingCharge:
        """Reverse a refunded capture: paid goes down, refunded goes up."""
        amount = to_money(amount)
        paid = to_decimal(charge.amount_paid or 0)
        if amount <= ZERO or amount > paid:
            raise ConsistencyError(
                "Refund amount must be positive and not exceed the amount paid",
                details={"booking_id": charge.booking_id, "amount": str(amount), "amount_paid": str(paid)},
            )

        charge.amount_paid = to_money(paid - amount)
        charge.refund_amount = to_money(to_decimal(charge.refund_amount or 0) + amount)
        SettlementLedger.recompute_balance(charge)
        SettlementLedger.assert_consistent(charge)
        return charge

    @staticmethod
    def apply_extra_fee(
        charge: BookingCharge,
        kind: str,
        amount: Number,
        reason: Optional[str] = None,
        added_at: Optional[datetime] = None,
    ) -> BookingCharge:
        """
        Add a post-rental charge (overtime, damage, cleaning...).

        Subtotal, VAT (at the rate stored on the charge) and total are
        recomputed, then the balance.
        """
        amount = to_money(amount)
        if amount <= ZERO:
            return charge

        entry = {
            "kind": kind,
            "amount": str(amount),
            "reason": reason,
            "added_at": added_at.isoformat() if added_at else None,
        }
        # Reassign so the JSON column is marked dirty
        charge.extra_fee_details = list(charge.extra_fee_details or []) + [entry]
        charge.extra_fee = to_money(to_decimal(charge.extra_fee or 0) + amount)

        charge.subtotal = to_money(to_decimal(charge.subtotal) + amount)
        charge.vat_amount = to_money(to_decimal(charge.subtotal) * to_decimal(charge.vat_rate or 0))
        charge.total_amount = to_money(to_decimal(charge.subtotal) + to_decimal(charge.vat_amount))

        SettlementLedger.recompute_balance(charge)
        SettlementLedger.assert_consistent(charge)
        return charge
