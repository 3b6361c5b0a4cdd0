"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class BookingValidationError(AppException):
    """Raised when a checkout request is malformed or missing required fields."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class BusinessRuleError(AppException):
    """Raised when an operation is refused by a booking rule (availability, payability)."""

    def __init__(self, message: str, error_code: str = "ERR_RULE_001", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class InvalidStateTransitionError(BusinessRuleError):
    """Raised when a booking or payment is asked to move to a state it cannot reach."""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            message=f"{entity} cannot transition from {current} to {target}",
            error_code="ERR_RULE_002",
            details={"entity": entity, "current": current, "target": target}
        )


class ConsistencyError(AppException):
    """
    Raised when a ledger invariant would be violated.

    Always fatal to the operation; callers must not swallow it.
    """

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_CONSISTENCY_001",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


class ExternalServiceError(AppException):
    """
    Raised when an external collaborator (gateway, rates, geocoding) fails.

    Nothing is committed when this is raised, so the caller may retry.
    """

    retryable = True

    def __init__(self, message: str, error_code: str = "ERR_EXTERNAL_001",
                 status_code: int = status.HTTP_502_BAD_GATEWAY, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )


class DistanceLookupError(ExternalServiceError):
    """Raised when a delivery distance cannot be estimated."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message=message, error_code="ERR_EXTERNAL_002", details=details)


class SettlementError(ExternalServiceError):
    """Base class for payment gateway failures during settlement."""


class GatewayError(SettlementError):
    """Raised when the payment gateway rejects a call or returns an unusable response."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message=message, error_code="ERR_GATEWAY_001", details=details)


class GatewayTimeoutError(SettlementError):
    """Raised when the payment gateway does not answer within the configured timeout."""

    def __init__(self, message: str = "Payment gateway timed out", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_GATEWAY_002",
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            details=details
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    if exc.status_code >= 500:
        logger.error(
            "%s: %s",
            exc.error_code,
            exc.message,
            extra={"path": request.url.path, "details": exc.details},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": jsonable_encoder(exc.details)
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
