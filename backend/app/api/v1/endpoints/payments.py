"""
Payment Gateway Callback Endpoints.

The gateway redirects the payer here after approving or abandoning an order.
The order id arrives as the `token` query parameter.
"""

from fastapi import APIRouter, Depends, Query

from backend.app.schemas.payment import CaptureResult
from backend.app.core.dependencies import get_payment_orchestrator
from backend.app.domain.billing.payment_orchestrator import PaymentOrchestrator

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.get("/paypal/success", response_model=CaptureResult)
async def paypal_success(
    token: str = Query(..., description="Gateway order id"),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """
    Capture an approved order.

    Safe to call more than once: a repeated callback reports the existing
    capture without charging or crediting again.
    """
    return await orchestrator.capture_order(token)


@router.get("/paypal/cancel")
async def paypal_cancel(
    token: str = Query(..., description="Gateway order id"),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """Payer abandoned approval; marks the pending payment cancelled."""
    cancelled = await orchestrator.cancel_order(token)
    return {"order_id": token, "cancelled": cancelled}
