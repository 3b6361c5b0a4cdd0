"""
FastAPI dependencies.

Authentication plus the swappable collaborators of the settlement core
(gateway, currency converter, distance provider). Tests override these via
app.dependency_overrides.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from backend.app.core.jwt import decode_access_token
from backend.app.core.redis_client import get_redis
from backend.app.db.session import get_db
from backend.app.domain.billing.currency import CurrencyConverter
from backend.app.domain.billing.payment_orchestrator import PaymentOrchestrator
from backend.app.models.user import User
from backend.app.services.distance import DistanceProvider, get_distance_provider as build_distance_provider
from backend.app.services.payment_gateway import PaymentGateway, PayPalGateway
from backend.app.services.rate_cache import RateCache

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    1. Validates JWT token signature and expiry
    2. Verifies user still exists and is active (real-time check)

    Args:
        credentials: HTTP Bearer token from request header
        db: Database session for real-time user status check

    Returns:
        Decoded token payload containing user information

    Raises:
        HTTPException: 401 if authentication fails, 403 if the user is inactive
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    return payload


def get_payment_gateway() -> PaymentGateway:
    return PayPalGateway()


def get_distance_provider() -> DistanceProvider:
    return build_distance_provider()


async def get_currency_converter(redis=Depends(get_redis)) -> CurrencyConverter:
    return CurrencyConverter(cache=RateCache(redis))


async def get_payment_orchestrator(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    converter: CurrencyConverter = Depends(get_currency_converter),
) -> PaymentOrchestrator:
    return PaymentOrchestrator(db=db, gateway=gateway, converter=converter)
