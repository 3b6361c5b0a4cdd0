"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import (
    bookings, payments, admin_bookings, admin_payments
)

router = APIRouter()

# Customer checkout and booking management
router.include_router(bookings.router)

# Gateway callbacks
router.include_router(payments.router)

# Admin lifecycle, refunds and currency
router.include_router(admin_bookings.router)
router.include_router(admin_payments.router)
router.include_router(admin_payments.currency_router)
