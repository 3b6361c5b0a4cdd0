"""
Admin Payment and Currency Endpoints.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, Body
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.schemas.payment import RefundRequest, RefundResult
from backend.app.schemas.currency import ExchangeRateResponse
from backend.app.core.guards import require_admin
from backend.app.core.dependencies import get_payment_orchestrator, get_currency_converter
from backend.app.domain.billing.currency import CurrencyConverter
from backend.app.domain.billing.payment_orchestrator import PaymentOrchestrator
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/admin/payments", tags=["Admin - Payments"])
currency_router = APIRouter(prefix="/admin/currency", tags=["Admin - Currency"])


@router.post("/{payment_id}/refund", response_model=RefundResult)
async def refund_payment(
    payment_id: int = Path(..., description="Payment ID"),
    request: Optional[RefundRequest] = Body(None),
    admin: dict = Depends(require_admin),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """
    Refund a completed payment through the gateway.

    If the gateway call fails the payment stays completed and nothing is
    written.
    """
    request = request or RefundRequest()
    return await orchestrator.refund(
        payment_id,
        reason=request.reason,
        actor_id=admin["user_id"],
        actor_username=admin.get("sub"),
    )


async def _rate_response(converter: CurrencyConverter) -> ExchangeRateResponse:
    rate = await converter.get_exchange_rate()
    return ExchangeRateResponse(
        local_currency=converter.local_currency,
        foreign_currency=converter.foreign_currency,
        exchange_rate=rate,
        cached=await converter.is_cached(),
        fixed_rate=converter.settings.use_fixed_exchange_rate,
        rate_text=converter.rate_text(rate),
    )


@currency_router.get("/rate", response_model=ExchangeRateResponse)
async def get_exchange_rate(
    admin: dict = Depends(require_admin),
    converter: CurrencyConverter = Depends(get_currency_converter)
):
    """Current exchange rate (local units per settlement unit)."""
    return await _rate_response(converter)


@currency_router.post("/refresh", response_model=ExchangeRateResponse)
async def refresh_exchange_rate(
    admin: dict = Depends(require_admin),
    converter: CurrencyConverter = Depends(get_currency_converter),
    db: AsyncSession = Depends(get_db)
):
    """Drop the cached rate and fetch a fresh one."""
    rate = await converter.refresh_rate()

    await log_event(
        db=db,
        action=AuditAction.EXCHANGE_RATE_REFRESHED,
        actor_id=admin["user_id"],
        actor_username=admin.get("sub"),
        metadata={"exchange_rate": str(rate), "rate_text": converter.rate_text(rate)},
    )
    await db.commit()

    return await _rate_response(converter)
