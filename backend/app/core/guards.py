"""
Security guards for role-based and ownership-based access control.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from backend.app.models.enums import UserRole
from backend.app.core.dependencies import get_current_user
from backend.app.core.exceptions import InsufficientPermissionsError


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/bookings")
        async def create_booking(current_user: dict = Depends(require_role([UserRole.CUSTOMER]))):
            ...

    Args:
        allowed_roles: List of UserRole enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function that validates user role

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        try:
            user_role = UserRole(user_role_str)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    """
    Dependency for admin-only endpoints.

    Args:
        current_user: Authenticated user from JWT

    Returns:
        User payload if admin, raises 403 otherwise
    """
    if current_user.get("role") != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    return current_user


def can_access_booking(booking, current_user: dict) -> bool:
    """
    Admins see every booking, owners their cars' bookings, customers their own.
    """
    user_role = current_user.get("role")
    user_id = current_user.get("user_id")

    if user_role == UserRole.ADMIN.value:
        return True
    if user_role == UserRole.OWNER.value:
        return booking.owner_id == user_id
    return booking.user_id == user_id


def enforce_booking_access(booking, current_user: dict) -> None:
    """Raise InsufficientPermissionsError unless the user may act on the booking."""
    if not can_access_booking(booking, current_user):
        raise InsufficientPermissionsError(
            "You do not have permission to access this booking",
            details={"booking_id": booking.id},
        )
