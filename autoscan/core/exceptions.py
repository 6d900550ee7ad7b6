"""Custom exceptions and centralized exception handlers."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class AppException(Exception):
    """Base application exception with structured error response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.status_code = status_code or self.status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to RFC 7807 problem+json style response."""
        return {
            "error": self.error_code,
            "message": self.message,
            "status": self.status_code,
            **({"details": self.details} if self.details else {}),
        }


class NotFoundError(AppException):
    """Resource not found."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    message = "Resource not found"


class BadRequestError(AppException):
    """Bad request."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "BAD_REQUEST"
    message = "Bad request"


class ValidationError(AppException):
    """Validation failed."""

    status_code = 422
    error_code = "VALIDATION_ERROR"
    message = "Validation failed"


class ConflictError(AppException):
    """Resource conflict."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "CONFLICT"
    message = "Resource conflict"


class ExternalServiceError(AppException):
    """External service error (transport failure, 5xx)."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "EXTERNAL_SERVICE_ERROR"
    message = "External service temporarily unavailable"


class RateLimitExceeded(AppException):
    """Provider quota exhausted for the current window.

    Raised internally by the request governor and resolved by queueing.
    """

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "RATE_LIMIT_EXCEEDED"
    message = "Provider quota exhausted"


class RequestTimeout(AppException):
    """A queued provider call waited longer than its timeout."""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    error_code = "REQUEST_TIMEOUT"
    message = "Request timeout"


class UpstreamValidationError(ExternalServiceError):
    """Provider returned a malformed or incomplete response."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "UPSTREAM_VALIDATION_ERROR"
    message = "Malformed response from provider"


class TransientFetchFailure(ExternalServiceError):
    """Price fetch failed for one symbol; retried on the next tick."""

    error_code = "TRANSIENT_FETCH_FAILURE"
    message = "Price fetch failed"


class RiskViolation(AppException):
    """Trade rejected locally by the risk gate."""

    status_code = 422
    error_code = "RISK_VIOLATION"
    message = "Trade rejected by risk limits"


class BrokerRejection(AppException):
    """Brokerage refused the order."""

    status_code = 422
    error_code = "BROKER_REJECTION"
    message = "Order rejected by broker"


class PersistenceError(AppException):
    """Database operation failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "PERSISTENCE_ERROR"
    message = "Database operation failed"


class JobError(AppException):
    """Job execution failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "JOB_ERROR"
    message = "Job execution failed"


def register_exception_handlers(app: FastAPI) -> None:
    """Register centralized exception handlers."""

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request, exc: AppException
    ) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger = logging.getLogger("autoscan.error")
        logger.exception(
            "Unhandled exception",
            extra={"path": request.url.path, "method": request.method},
        )

        from .config import settings

        if settings.debug:
            message = str(exc)
        else:
            message = "An unexpected error occurred"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "INTERNAL_ERROR",
                "message": message,
                "status": 500,
            },
        )
