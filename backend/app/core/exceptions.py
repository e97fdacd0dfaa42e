"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
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


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found (or not owned by the caller)."""

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


class LedgerValidationError(AppException):
    """Raised when a ledger entry is rejected before any write."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_VALIDATION",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class NotASettlementMarkerError(AppException):
    """Raised when unsettle is called with an entry that is not a settlement marker."""

    def __init__(self, entry_id: int):
        super().__init__(
            message="This is not a Monday Final entry",
            error_code="ERR_LEDGER_002",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"id": entry_id}
        )


class SettledEntryError(AppException):
    """Raised when a settled entry or a marker is edited or deleted directly."""

    def __init__(self, entry_id: int, message: str = "Entry is part of a settlement and cannot be changed"):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_003",
            status_code=status.HTTP_409_CONFLICT,
            details={"id": entry_id}
        )


class TransactionCancelledError(AppException):
    """Raised when a commission transaction is cancelled a second time."""

    def __init__(self, transaction_id: str):
        super().__init__(
            message=f"Commission transaction {transaction_id} is already cancelled",
            error_code="ERR_LEDGER_004",
            status_code=status.HTTP_409_CONFLICT,
            details={"transaction_id": transaction_id}
        )


class DuplicatePartyError(AppException):
    """Raised when a party name is already registered for the user."""

    def __init__(self, party_name: str):
        super().__init__(
            message=f"Party '{party_name}' already exists",
            error_code="ERR_PARTY_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"party_name": party_name}
        )


class LockAcquisitionError(AppException):
    """Raised when a party lock cannot be acquired in time."""

    def __init__(self, key: str, timeout: float):
        super().__init__(
            message="Another update for this party is in progress, try again",
            error_code="ERR_LOCK_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"lock": key, "timeout_seconds": timeout}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
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
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=422,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": [
                    {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
                    for error in exc.errors()
                ]
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception on %s %s: %s", request.method, request.url.path, type(exc).__name__
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
