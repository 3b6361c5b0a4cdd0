"""
Payment Orchestrator (Domain Logic).

Reconciles bookings against the payment gateway. Each public operation is one
unit of work: it owns the transaction, commits when the gateway call and the
ledger mutation have both succeeded, and rolls back otherwise.

Capture is idempotent: the payment row is locked and an already completed
payment is reported as captured without calling the gateway again.
"""

import asyncio
import logging
import uuid
import weakref
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import (
    BusinessRuleError,
    ConsistencyError,
    ResourceNotFoundError,
    SettlementError,
)
from backend.app.core.timeutils import utcnow
from backend.app.domain.billing.currency import CurrencyConverter
from backend.app.domain.billing.ledger import SettlementLedger, ensure_payment_transition
from backend.app.domain.booking import catalog
from backend.app.domain.booking.booking_service import BookingService
from backend.app.domain.booking.state_machine import is_terminal
from backend.app.domain.pricing.money import ZERO, to_decimal, to_money
from backend.app.models.billing_enums import (
    BookingPaymentStatus,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
)
from backend.app.models.booking import Booking
from backend.app.models.payment import Payment
from backend.app.schemas.payment import CaptureResult, OrderHandle, RefundResult
from backend.app.services.audit import AuditAction, log_event
from backend.app.services.payment_gateway import PaymentGateway, extract_capture_id

logger = logging.getLogger(__name__)

MIN_FOREIGN_AMOUNT = Decimal("0.01")

# One lock per order id while a callback for it is in flight
_order_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _order_lock(order_id: str) -> asyncio.Lock:
    lock = _order_locks.get(order_id)
    if lock is None:
        lock = asyncio.Lock()
        _order_locks[order_id] = lock
    return lock


class PaymentOrchestrator:

    def __init__(self, db: AsyncSession, gateway: PaymentGateway, converter: CurrencyConverter):
        self.db = db
        self.gateway = gateway
        self.converter = converter

    async def create_order(
        self,
        booking: Booking,
        payment_type: PaymentType,
        amount: Optional[Decimal] = None,
        actor_id: Optional[int] = None,
        actor_username: Optional[str] = None,
    ) -> OrderHandle:
        """
        Start a gateway payment for a booking.

        Args:
            booking: Booking to pay for
            payment_type: deposit, full_payment or partial
            amount: Booking-currency amount; defaults to the deposit snapshot
                for deposits and the unpaid total for full payments
            actor_id: Paying user
            actor_username: Username for the audit trail

        Returns:
            OrderHandle with the approval URL

        Raises:
            BusinessRuleError: Booking not payable or amount out of range
            GatewayError / GatewayTimeoutError: Gateway unreachable or refused
        """
        if is_terminal(booking):
            raise BusinessRuleError(
                f"Booking is {booking.status.value} and cannot take payments",
                error_code="ERR_PAYMENT_001",
                details={"booking_id": booking.id, "status": booking.status.value},
            )

        charge = await catalog.get_booking_charge(self.db, booking.id)
        if charge is None:
            raise ConsistencyError("Booking has no charge ledger", details={"booking_id": booking.id})

        outstanding = to_money(to_decimal(charge.total_amount) - to_decimal(charge.amount_paid or 0))
        amount_local = self._select_amount(booking, payment_type, amount, outstanding)

        rate = await self.converter.get_exchange_rate()
        amount_foreign = await self.converter.to_foreign(amount_local, rate)
        if amount_foreign < MIN_FOREIGN_AMOUNT:
            raise BusinessRuleError(
                "Payment amount is too small for the gateway currency",
                error_code="ERR_PAYMENT_003",
                details={"amount_local": amount_local, "amount_foreign": amount_foreign},
            )

        context = {"booking_id": booking.id, "payment_type": payment_type.value}
        try:
            order = await self.gateway.create_order(
                reference_id=booking.booking_code,
                description=f"Car Rental - {booking.booking_code}",
                custom_id={"booking_id": booking.id, "payment_type": payment_type.value},
                amount=amount_foreign,
                currency=self.converter.foreign_currency,
            )
        except SettlementError:
            logger.error("Gateway order creation failed for booking %s", booking.id, extra=context)
            await self.db.rollback()
            raise

        payment = Payment(
            transaction_id=f"TXN-{uuid.uuid4().hex[:20].upper()}",
            booking_id=booking.id,
            user_id=booking.user_id,
            payment_method=PaymentMethod.PAYPAL,
            payment_type=payment_type,
            local_currency=self.converter.local_currency,
            currency=self.converter.foreign_currency,
            amount_local=amount_local,
            amount_foreign=amount_foreign,
            exchange_rate=rate,
            status=PaymentStatus.PENDING,
            gateway_order_id=order.order_id,
            gateway_response=order.raw,
        )
        self.db.add(payment)
        await self.db.flush()

        await log_event(
            db=self.db,
            action=AuditAction.PAYMENT_ORDER_CREATED,
            actor_id=actor_id,
            actor_username=actor_username,
            booking_id=booking.id,
            payment_id=payment.id,
            metadata={
                "order_id": order.order_id,
                "payment_type": payment_type.value,
                "amount_local": str(amount_local),
                "amount_foreign": str(amount_foreign),
                "exchange_rate": str(rate),
            },
        )
        await self.db.commit()

        logger.info(
            "Gateway order %s created for booking %s (%s %s)",
            order.order_id, booking.id, amount_foreign, payment.currency,
        )

        return OrderHandle(
            payment_id=payment.id,
            order_id=order.order_id,
            approval_url=order.approval_url,
            status=payment.status,
            payment_type=payment_type,
            amount_local=amount_local,
            local_currency=payment.local_currency,
            amount_foreign=amount_foreign,
            currency=payment.currency,
            exchange_rate=rate,
        )

    async def capture_order(self, order_id: str) -> CaptureResult:
        """
        Capture an approved order and credit the booking's ledger.

        A completed payment is reported as captured again without a gateway
        call. A declined capture marks the payment failed and leaves the
        booking pending. Callbacks for the same order are serialized, and the
        payment only leaves `pending` through a conditional update, so a
        duplicate callback never credits the ledger twice.

        Raises:
            ResourceNotFoundError: No payment for this order
            ConsistencyError: Booking or ledger missing, or booking closed
            GatewayError / GatewayTimeoutError: Nothing is committed
        """
        async with _order_lock(order_id):
            return await self._capture(order_id)

    async def _capture(self, order_id: str) -> CaptureResult:
        payment = await catalog.get_payment_by_order_id(self.db, order_id, for_update=True)
        if payment is None:
            raise ResourceNotFoundError("Payment", order_id)

        payment_id = payment.id
        context = {"order_id": order_id, "booking_id": payment.booking_id, "payment_id": payment_id}

        if payment.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
            await self.db.commit()
            logger.info("Order %s already captured; skipping gateway", order_id, extra=context)
            return self._capture_result(payment, success=True, already_captured=True)

        if payment.status != PaymentStatus.PENDING:
            await self.db.commit()
            return self._capture_result(
                payment, success=False, message=f"Payment is {payment.status.value} and cannot be captured"
            )

        booking = await catalog.get_booking(self.db, payment.booking_id, for_update=True)
        charge = await catalog.get_booking_charge(self.db, payment.booking_id, for_update=True)
        if booking is None or charge is None:
            await self.db.rollback()
            logger.error("Capture for order %s has no booking ledger", order_id, extra=context)
            raise ConsistencyError("Payment references a booking that no longer exists", details=context)
        if is_terminal(booking):
            booking_status = booking.status.value
            await self.db.rollback()
            logger.error("Capture for order %s on %s booking", order_id, booking_status, extra=context)
            raise ConsistencyError(
                f"Cannot capture payment for a {booking_status} booking",
                details={**context, "booking_status": booking_status},
            )

        try:
            capture = await self.gateway.capture_order(order_id)
        except SettlementError:
            logger.error("Gateway capture failed for order %s", order_id, extra=context)
            await self.db.rollback()
            raise

        if not capture.completed:
            if not await self._settle(payment, PaymentStatus.FAILED):
                return await self._settled_elsewhere(payment_id, context)
            payment.gateway_response = capture.raw
            await self.db.flush()
            await log_event(
                db=self.db,
                action=AuditAction.PAYMENT_FAILED,
                booking_id=booking.id,
                payment_id=payment_id,
                metadata={"order_id": order_id, "gateway_status": capture.status},
            )
            await self.db.commit()
            logger.warning("Capture declined for order %s: %s", order_id, capture.status, extra=context)
            return self._capture_result(
                payment, success=False, gateway_status=capture.status, message="Payment capture failed"
            )

        try:
            if not await self._settle(payment, PaymentStatus.COMPLETED, paid_at=utcnow()):
                return await self._settled_elsewhere(payment_id, context)
            payment.gateway_payer_id = capture.payer_id
            payment.gateway_payer_email = capture.payer_email
            payment.gateway_response = capture.raw

            SettlementLedger.apply_capture(charge, payment.amount_local)

            if booking.status == BookingStatus.PENDING:
                await BookingService.confirm(self.db, booking)
            booking.payment_status = BookingPaymentStatus.PAID

            await self.db.flush()
            await log_event(
                db=self.db,
                action=AuditAction.PAYMENT_CAPTURED,
                booking_id=booking.id,
                payment_id=payment_id,
                metadata={
                    "order_id": order_id,
                    "capture_id": capture.capture_id,
                    "amount_local": str(payment.amount_local),
                    "amount_paid": str(charge.amount_paid),
                    "balance_due": str(charge.balance_due),
                },
            )
            await self.db.commit()
        except ConsistencyError:
            await self.db.rollback()
            logger.error("Ledger rejected capture for order %s", order_id, extra=context)
            raise

        logger.info("Order %s captured; booking %s balance %s", order_id, booking.id, charge.balance_due)
        return self._capture_result(payment, success=True, gateway_status=capture.status)

    async def _settle(self, payment: Payment, target: PaymentStatus, **values: Any) -> bool:
        """Move a pending payment to `target`; False if another callback already moved it."""
        ensure_payment_transition(payment, target)
        result = await self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        payment.status = target
        for field, value in values.items():
            setattr(payment, field, value)
        return True

    async def _settled_elsewhere(self, payment_id: int, context: Dict[str, Any]) -> CaptureResult:
        await self.db.rollback()
        logger.warning("Payment %s was settled by a concurrent callback", payment_id, extra=context)

        payment = await catalog.get_payment(self.db, payment_id)
        await self.db.commit()
        if payment.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
            return self._capture_result(payment, success=True, already_captured=True)
        return self._capture_result(
            payment, success=False, message=f"Payment is {payment.status.value} and cannot be captured"
        )

    async def cancel_order(self, order_id: str) -> bool:
        """
        Mark a pending payment cancelled after the payer abandoned approval.

        No gateway call: an unapproved order is never captured.

        Returns:
            True if the payment was pending and is now cancelled
        """
        payment = await catalog.get_payment_by_order_id(self.db, order_id, for_update=True)
        if payment is None or payment.status != PaymentStatus.PENDING:
            await self.db.rollback()
            return False

        payment.status = PaymentStatus.CANCELLED
        await self.db.flush()
        await log_event(
            db=self.db,
            action=AuditAction.PAYMENT_CANCELLED,
            booking_id=payment.booking_id,
            payment_id=payment.id,
            metadata={"order_id": order_id},
        )
        await self.db.commit()

        logger.info("Order %s cancelled by payer", order_id)
        return True

    async def refund(
        self,
        payment_id: int,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None,
        actor_username: Optional[str] = None,
    ) -> RefundResult:
        """
        Refund a completed payment in full.

        The refund record is appended to the stored gateway response; earlier
        history is kept. On gateway failure the payment stays completed.

        Raises:
            ResourceNotFoundError: Unknown payment
            InvalidStateTransitionError: Payment is not completed
            ConsistencyError: No capture reference or ledger
            GatewayError / GatewayTimeoutError: Nothing is committed
        """
        payment = await catalog.get_payment(self.db, payment_id, for_update=True)
        if payment is None:
            raise ResourceNotFoundError("Payment", payment_id)

        ensure_payment_transition(payment, PaymentStatus.REFUNDED)

        context = {"order_id": payment.gateway_order_id, "booking_id": payment.booking_id, "payment_id": payment.id}

        capture_id = extract_capture_id(payment.gateway_response or {})
        if capture_id is None:
            await self.db.rollback()
            logger.error("No capture reference stored for payment %s", payment_id, extra=context)
            raise ConsistencyError("Payment has no gateway capture reference", details=context)

        charge = await catalog.get_booking_charge(self.db, payment.booking_id, for_update=True)
        if charge is None:
            await self.db.rollback()
            raise ConsistencyError("Payment references a booking that no longer exists", details=context)

        try:
            refund = await self.gateway.refund_capture(
                capture_id,
                amount=to_money(payment.amount_foreign),
                currency=payment.currency,
                note=reason,
            )
        except SettlementError:
            logger.error("Gateway refund failed for payment %s", payment_id, extra=context)
            await self.db.rollback()
            raise

        try:
            refunded_at = utcnow()
            payment.status = PaymentStatus.REFUNDED
            payment.refunded_at = refunded_at
            payment.notes = reason or "Refunded by admin"
            payment.gateway_response = _append_refund(payment.gateway_response, {
                "id": refund.refund_id,
                "status": refund.status,
                "capture_id": capture_id,
                "amount": str(payment.amount_foreign),
                "currency": payment.currency,
                "reason": reason,
                "refunded_at": refunded_at.isoformat(),
            })

            SettlementLedger.apply_refund(charge, payment.amount_local)
            if to_decimal(charge.amount_paid) == ZERO:
                booking = await catalog.get_booking(self.db, payment.booking_id)
                booking.payment_status = BookingPaymentStatus.REFUNDED

            await self.db.flush()
            await log_event(
                db=self.db,
                action=AuditAction.PAYMENT_REFUNDED,
                actor_id=actor_id,
                actor_username=actor_username,
                booking_id=payment.booking_id,
                payment_id=payment.id,
                metadata={
                    "refund_id": refund.refund_id,
                    "amount_local": str(payment.amount_local),
                    "refund_amount": str(charge.refund_amount),
                    "balance_due": str(charge.balance_due),
                    "reason": reason,
                },
            )
            await self.db.commit()
        except ConsistencyError:
            await self.db.rollback()
            logger.error("Ledger rejected refund for payment %s", payment_id, extra=context)
            raise

        logger.info("Payment %s refunded (refund %s)", payment.id, refund.refund_id, extra=context)

        return RefundResult(
            refund_id=refund.refund_id,
            payment_id=payment.id,
            booking_id=payment.booking_id,
            status=payment.status,
            gateway_status=refund.status,
            amount_local=to_money(payment.amount_local),
            amount_foreign=to_money(payment.amount_foreign),
        )

    async def get_order_details(self, order_id: str) -> Dict[str, Any]:
        return await self.gateway.get_order(order_id)

    def _select_amount(
        self,
        booking: Booking,
        payment_type: PaymentType,
        amount: Optional[Decimal],
        outstanding: Decimal,
    ) -> Decimal:
        if amount is None:
            if payment_type == PaymentType.DEPOSIT:
                amount = to_decimal(booking.deposit_amount or 0)
            elif payment_type == PaymentType.FULL_PAYMENT:
                amount = outstanding
            else:
                raise BusinessRuleError(
                    "An amount is required for partial payments",
                    error_code="ERR_PAYMENT_002",
                    details={"booking_id": booking.id},
                )

        amount = to_money(amount)
        if amount <= ZERO:
            raise BusinessRuleError(
                "Nothing to pay for this booking",
                error_code="ERR_PAYMENT_002",
                details={"booking_id": booking.id, "payment_type": payment_type.value},
            )
        if amount > outstanding:
            raise BusinessRuleError(
                "Payment amount exceeds the unpaid total",
                error_code="ERR_PAYMENT_002",
                details={"booking_id": booking.id, "amount": amount, "outstanding": outstanding},
            )
        return amount

    @staticmethod
    def _capture_result(
        payment: Payment,
        success: bool,
        already_captured: bool = False,
        gateway_status: Optional[str] = None,
        message: Optional[str] = None,
    ) -> CaptureResult:
        return CaptureResult(
            success=success,
            payment_id=payment.id,
            order_id=payment.gateway_order_id,
            booking_id=payment.booking_id,
            status=payment.status,
            already_captured=already_captured,
            gateway_status=gateway_status,
            amount_local=to_money(payment.amount_local),
            payer_email=payment.gateway_payer_email,
            message=message,
        )


def _append_refund(response: Optional[Dict[str, Any]], record: Dict[str, Any]) -> Dict[str, Any]:
    # New dict so the JSON column is marked dirty
    response = dict(response or {})
    response["refunds"] = list(response.get("refunds", [])) + [record]
    return response
