"""
Payment orchestration tests.

Covers order creation, idempotent capture, declined and failed captures,
payer cancellation and refunds, checking the ledger invariant after each
settlement step.
"""

import asyncio
import pytest
from decimal import Decimal

from sqlalchemy import update

from backend.app.core.exceptions import (
    BusinessRuleError,
    ConsistencyError,
    GatewayError,
    GatewayTimeoutError,
    InvalidStateTransitionError,
    ResourceNotFoundError,
)
from backend.app.domain.billing.ledger import SettlementLedger
from backend.app.domain.billing.payment_orchestrator import PaymentOrchestrator
from backend.app.domain.booking import catalog as catalog_queries
from backend.app.domain.booking.booking_service import BookingService
from backend.app.models.billing_enums import (
    BookingPaymentStatus,
    BookingStatus,
    PaymentStatus,
    PaymentType,
)
from backend.app.models.payment import Payment
from backend.app.services.audit import AuditAction, get_audit_trail
from backend.tests.helpers import place_booking


async def assert_ledger_consistent(db, booking_id):
    charge = await catalog_queries.get_booking_charge(db, booking_id)
    await db.refresh(charge)
    assert charge.balance_due == charge.total_amount - charge.amount_paid - charge.deposit_amount
    assert charge.amount_paid >= 0
    assert charge.refund_amount >= 0
    return charge


# Order creation

@pytest.mark.asyncio
async def test_deposit_order_converts_to_gateway_currency(db_session, catalog, orchestrator, fake_gateway):
    """Deposit 500,000 VND at 24,500 VND/USD is 20.41 USD."""
    booking = await place_booking(db_session, catalog)

    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT, actor_id=catalog["customer"].id)

    assert handle.order_id == "ORDER-0001"
    assert handle.approval_url.endswith("ORDER-0001")
    assert handle.status == PaymentStatus.PENDING
    assert handle.amount_local == Decimal("500000.00")
    assert handle.amount_foreign == Decimal("20.41")
    assert handle.currency == "USD"
    assert handle.exchange_rate == Decimal("24500.0000")

    name, call = fake_gateway.calls[0]
    assert name == "create_order"
    assert call["reference_id"] == booking.booking_code
    assert call["amount"] == Decimal("20.41")
    assert call["custom_id"] == {"booking_id": booking.id, "payment_type": "deposit"}

    payments = await catalog_queries.list_booking_payments(db_session, booking.id)
    assert len(payments) == 1
    assert payments[0].transaction_id.startswith("TXN-")
    assert payments[0].status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_full_payment_defaults_to_unpaid_total(db_session, catalog, orchestrator):
    booking = await place_booking(db_session, catalog)

    handle = await orchestrator.create_order(booking, PaymentType.FULL_PAYMENT)

    assert handle.amount_local == Decimal("660000.00")


@pytest.mark.asyncio
async def test_partial_payment_requires_amount(db_session, catalog, orchestrator, fake_gateway):
    booking = await place_booking(db_session, catalog)

    with pytest.raises(BusinessRuleError) as exc_info:
        await orchestrator.create_order(booking, PaymentType.PARTIAL)

    assert exc_info.value.error_code == "ERR_PAYMENT_002"
    assert fake_gateway.calls == []


@pytest.mark.asyncio
async def test_amount_above_unpaid_total_is_refused(db_session, catalog, orchestrator):
    booking = await place_booking(db_session, catalog)

    with pytest.raises(BusinessRuleError) as exc_info:
        await orchestrator.create_order(booking, PaymentType.PARTIAL, amount=Decimal("660000.01"))

    assert exc_info.value.error_code == "ERR_PAYMENT_002"


@pytest.mark.asyncio
async def test_amount_too_small_for_gateway_currency(db_session, catalog, orchestrator):
    booking = await place_booking(db_session, catalog)

    with pytest.raises(BusinessRuleError) as exc_info:
        await orchestrator.create_order(booking, PaymentType.PARTIAL, amount=Decimal("100"))

    assert exc_info.value.error_code == "ERR_PAYMENT_003"


@pytest.mark.asyncio
async def test_closed_booking_cannot_take_payments(db_session, catalog, orchestrator, fake_gateway):
    booking = await place_booking(db_session, catalog)
    await BookingService.cancel(db_session, booking, "Plans changed", actor_id=catalog["customer"].id)
    await db_session.commit()

    with pytest.raises(BusinessRuleError) as exc_info:
        await orchestrator.create_order(booking, PaymentType.DEPOSIT)

    assert exc_info.value.error_code == "ERR_PAYMENT_001"
    assert fake_gateway.calls == []


@pytest.mark.asyncio
async def test_gateway_failure_on_order_leaves_no_payment(db_session, catalog, orchestrator, fake_gateway):
    booking = await place_booking(db_session, catalog)
    booking_id = booking.id
    fake_gateway.failures["create_order"] = GatewayTimeoutError()

    with pytest.raises(GatewayTimeoutError):
        await orchestrator.create_order(booking, PaymentType.DEPOSIT)

    assert await catalog_queries.list_booking_payments(db_session, booking_id) == []


# Capture

@pytest.mark.asyncio
async def test_capture_credits_ledger_and_confirms_booking(db_session, catalog, orchestrator):
    booking = await place_booking(db_session, catalog)
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)

    result = await orchestrator.capture_order(handle.order_id)

    assert result.success is True
    assert result.already_captured is False
    assert result.status == PaymentStatus.COMPLETED
    assert result.gateway_status == "COMPLETED"
    assert result.payer_email == "payer@example.com"
    assert result.amount_local == Decimal("500000.00")

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == BookingPaymentStatus.PAID

    charge = await assert_ledger_consistent(db_session, booking.id)
    assert charge.amount_paid == Decimal("500000.00")

    actions = {entry.action for entry in await get_audit_trail(db_session, booking_id=booking.id)}
    assert {AuditAction.PAYMENT_ORDER_CREATED, AuditAction.PAYMENT_CAPTURED, AuditAction.BOOKING_CONFIRMED} <= actions


@pytest.mark.asyncio
async def test_repeated_capture_is_idempotent(db_session, catalog, orchestrator, fake_gateway):
    """A second success callback for the same order does not hit the gateway or the ledger."""
    booking = await place_booking(db_session, catalog)
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)

    first = await orchestrator.capture_order(handle.order_id)
    second = await orchestrator.capture_order(handle.order_id)

    assert first.success is True
    assert second.success is True
    assert second.already_captured is True
    assert second.status == PaymentStatus.COMPLETED
    assert fake_gateway.count("capture_order") == 1

    charge = await assert_ledger_consistent(db_session, booking.id)
    assert charge.amount_paid == Decimal("500000.00")


@pytest.mark.asyncio
async def test_declined_capture_marks_payment_failed(db_session, catalog, orchestrator, fake_gateway):
    booking = await place_booking(db_session, catalog)
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)
    fake_gateway.capture_status = "INSTRUMENT_DECLINED"

    result = await orchestrator.capture_order(handle.order_id)

    assert result.success is False
    assert result.status == PaymentStatus.FAILED
    assert result.gateway_status == "INSTRUMENT_DECLINED"
    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == BookingPaymentStatus.PENDING

    charge = await assert_ledger_consistent(db_session, booking.id)
    assert charge.amount_paid == Decimal("0.00")

    # A failed payment is not captured on a later callback
    again = await orchestrator.capture_order(handle.order_id)
    assert again.success is False
    assert fake_gateway.count("capture_order") == 1


@pytest.mark.asyncio
async def test_gateway_error_on_capture_changes_nothing(db_session, catalog, orchestrator, fake_gateway):
    """The capture can be retried after a gateway failure."""
    booking = await place_booking(db_session, catalog)
    booking_id = booking.id
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)
    fake_gateway.failures["capture_order"] = GatewayError("Payment gateway returned HTTP 500")

    with pytest.raises(GatewayError) as exc_info:
        await orchestrator.capture_order(handle.order_id)
    assert exc_info.value.retryable is True

    payment = await catalog_queries.get_payment_by_order_id(db_session, handle.order_id)
    await db_session.refresh(payment)
    booking = await catalog_queries.get_booking(db_session, booking_id)
    await db_session.refresh(booking)
    assert payment.status == PaymentStatus.PENDING
    assert booking.status == BookingStatus.PENDING
    charge = await assert_ledger_consistent(db_session, booking_id)
    assert charge.amount_paid == Decimal("0.00")

    del fake_gateway.failures["capture_order"]
    retried = await orchestrator.capture_order(handle.order_id)

    assert retried.success is True
    assert retried.already_captured is False


@pytest.mark.asyncio
async def test_capture_unknown_order(orchestrator):
    with pytest.raises(ResourceNotFoundError):
        await orchestrator.capture_order("ORDER-MISSING")


@pytest.mark.asyncio
async def test_capture_for_cancelled_booking_is_inconsistent(db_session, catalog, orchestrator, fake_gateway):
    booking = await place_booking(db_session, catalog)
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)
    await BookingService.cancel(db_session, booking, "Plans changed", actor_id=catalog["customer"].id)
    await db_session.commit()

    with pytest.raises(ConsistencyError) as exc_info:
        await orchestrator.capture_order(handle.order_id)

    assert exc_info.value.details["booking_status"] == "cancelled"
    assert exc_info.value.details["payment_id"] == handle.payment_id
    assert "cancelled booking" in exc_info.value.message
    assert fake_gateway.count("capture_order") == 0


@pytest.mark.asyncio
async def test_second_capture_on_confirmed_booking_keeps_it_confirmed(db_session, catalog, orchestrator):
    """Deposit then balance: both credit the ledger, the booking is confirmed once."""
    booking = await place_booking(db_session, catalog)
    deposit = await orchestrator.create_order(booking, PaymentType.DEPOSIT)
    await orchestrator.capture_order(deposit.order_id)

    rest = await orchestrator.create_order(booking, PaymentType.FULL_PAYMENT)
    result = await orchestrator.capture_order(rest.order_id)

    assert rest.amount_local == Decimal("160000.00")
    assert result.success is True
    assert booking.status == BookingStatus.CONFIRMED
    charge = await assert_ledger_consistent(db_session, booking.id)
    assert charge.amount_paid == Decimal("660000.00")


# Payer cancellation

@pytest.mark.asyncio
async def test_payer_cancel_marks_pending_payment_cancelled(db_session, catalog, orchestrator, fake_gateway):
    booking = await place_booking(db_session, catalog)
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)

    assert await orchestrator.cancel_order(handle.order_id) is True
    assert await orchestrator.cancel_order(handle.order_id) is False

    payment = await catalog_queries.get_payment_by_order_id(db_session, handle.order_id)
    await db_session.refresh(payment)
    assert payment.status == PaymentStatus.CANCELLED
    assert fake_gateway.count("capture_order") == 0


# Refunds

@pytest.mark.asyncio
async def test_refund_reverses_capture(db_session, catalog, orchestrator, fake_gateway):
    booking = await place_booking(db_session, catalog)
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)
    await orchestrator.capture_order(handle.order_id)

    result = await orchestrator.refund(handle.payment_id, reason="Car broke down", actor_id=catalog["admin"].id)

    assert result.refund_id == "REFUND-CAPTURE-ORDER-0001"
    assert result.status == PaymentStatus.REFUNDED
    assert result.amount_local == Decimal("500000.00")
    assert result.amount_foreign == Decimal("20.41")

    name, call = fake_gateway.calls[-1]
    assert name == "refund_capture"
    assert call["capture_id"] == "CAPTURE-ORDER-0001"
    assert call["amount"] == Decimal("20.41")
    assert call["currency"] == "USD"

    payment = await catalog_queries.get_payment(db_session, handle.payment_id)
    assert payment.refunded_at is not None
    assert payment.notes == "Car broke down"
    assert payment.gateway_response["refunds"][0]["id"] == "REFUND-CAPTURE-ORDER-0001"
    assert payment.gateway_response["purchase_units"]

    charge = await assert_ledger_consistent(db_session, booking.id)
    assert charge.amount_paid == Decimal("0.00")
    assert charge.refund_amount == Decimal("500000.00")
    assert booking.payment_status == BookingPaymentStatus.REFUNDED


@pytest.mark.asyncio
async def test_refund_twice_is_refused(db_session, catalog, orchestrator, fake_gateway):
    booking = await place_booking(db_session, catalog)
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)
    await orchestrator.capture_order(handle.order_id)
    await orchestrator.refund(handle.payment_id)

    with pytest.raises(InvalidStateTransitionError):
        await orchestrator.refund(handle.payment_id)

    assert fake_gateway.count("refund_capture") == 1


@pytest.mark.asyncio
async def test_pending_payment_cannot_be_refunded(db_session, catalog, orchestrator, fake_gateway):
    booking = await place_booking(db_session, catalog)
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)

    with pytest.raises(InvalidStateTransitionError):
        await orchestrator.refund(handle.payment_id)

    assert fake_gateway.count("refund_capture") == 0


@pytest.mark.asyncio
async def test_gateway_error_on_refund_keeps_payment_completed(db_session, catalog, orchestrator, fake_gateway):
    booking = await place_booking(db_session, catalog)
    booking_id = booking.id
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)
    await orchestrator.capture_order(handle.order_id)
    fake_gateway.failures["refund_capture"] = GatewayError("Payment gateway returned HTTP 422")

    with pytest.raises(GatewayError):
        await orchestrator.refund(handle.payment_id)

    payment = await catalog_queries.get_payment(db_session, handle.payment_id)
    await db_session.refresh(payment)
    assert payment.status == PaymentStatus.COMPLETED
    charge = await assert_ledger_consistent(db_session, booking_id)
    assert charge.amount_paid == Decimal("500000.00")
    assert charge.refund_amount == Decimal("0.00")


@pytest.mark.asyncio
async def test_refund_unknown_payment(orchestrator):
    with pytest.raises(ResourceNotFoundError):
        await orchestrator.refund(9999)


@pytest.mark.asyncio
async def test_order_details_come_from_gateway(db_session, catalog, orchestrator, fake_gateway):
    booking = await place_booking(db_session, catalog)
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)

    details = await orchestrator.get_order_details(handle.order_id)

    assert details == {"id": handle.order_id, "status": "APPROVED"}
    assert fake_gateway.count("get_order") == 1


@pytest.mark.asyncio
async def test_refund_without_capture_reference_is_inconsistent(db_session, catalog, orchestrator, fake_gateway):
    booking = await place_booking(db_session, catalog)
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)
    payment = await catalog_queries.get_payment(db_session, handle.payment_id)
    payment.status = PaymentStatus.COMPLETED
    payment.gateway_response = {"id": handle.order_id}
    await db_session.commit()

    with pytest.raises(ConsistencyError) as exc_info:
        await orchestrator.refund(handle.payment_id)

    assert exc_info.value.details["payment_id"] == handle.payment_id
    assert fake_gateway.count("refund_capture") == 0

    payment = await catalog_queries.get_payment(db_session, handle.payment_id)
    await db_session.refresh(payment)
    assert payment.status == PaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_refund_rejected_by_ledger_is_rolled_back(db_session, catalog, orchestrator, fake_gateway):
    """A refund larger than what the ledger shows as paid raises and writes nothing."""
    booking = await place_booking(db_session, catalog)
    booking_id = booking.id
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)
    await orchestrator.capture_order(handle.order_id)

    charge = await catalog_queries.get_booking_charge(db_session, booking_id)
    charge.amount_paid = Decimal("0.00")
    SettlementLedger.recompute_balance(charge)
    await db_session.commit()

    with pytest.raises(ConsistencyError):
        await orchestrator.refund(handle.payment_id, reason="Car unavailable")

    assert fake_gateway.count("refund_capture") == 1

    payment = await catalog_queries.get_payment(db_session, handle.payment_id)
    await db_session.refresh(payment)
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.refunded_at is None

    charge = await assert_ledger_consistent(db_session, booking_id)
    assert charge.amount_paid == Decimal("0.00")
    assert charge.refund_amount == Decimal("0.00")


# Concurrent callbacks

@pytest.mark.asyncio
async def test_concurrent_callbacks_capture_once(db_session, catalog, orchestrator, fake_gateway, converter, session_factory):
    """Two success callbacks in flight for one order: one gateway capture, one ledger credit."""
    booking = await place_booking(db_session, catalog)
    booking_id = booking.id
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)

    async def callback():
        async with session_factory() as session:
            return await PaymentOrchestrator(session, fake_gateway, converter).capture_order(handle.order_id)

    first, second = await asyncio.gather(callback(), callback())

    assert first.success is True
    assert second.success is True
    assert sorted([first.already_captured, second.already_captured]) == [False, True]
    assert fake_gateway.count("capture_order") == 1

    charge = await assert_ledger_consistent(db_session, booking_id)
    assert charge.amount_paid == Decimal("500000.00")


@pytest.mark.asyncio
async def test_capture_settled_elsewhere_is_not_credited_twice(
    db_session, catalog, orchestrator, fake_gateway, session_factory, mocker
):
    """Another worker completes the payment while the gateway call is in flight."""
    booking = await place_booking(db_session, catalog)
    booking_id = booking.id
    handle = await orchestrator.create_order(booking, PaymentType.DEPOSIT)
    capture = fake_gateway.capture_order

    async def capture_while_other_worker_settles(order_id):
        result = await capture(order_id)
        async with session_factory() as other:
            await other.execute(
                update(Payment)
                .where(Payment.gateway_order_id == order_id)
                .values(status=PaymentStatus.COMPLETED)
            )
            await other.commit()
        return result

    mocker.patch.object(fake_gateway, "capture_order", side_effect=capture_while_other_worker_settles)

    result = await orchestrator.capture_order(handle.order_id)

    assert result.success is True
    assert result.already_captured is True
    assert result.status == PaymentStatus.COMPLETED

    charge = await assert_ledger_consistent(db_session, booking_id)
    assert charge.amount_paid == Decimal("0.00")
