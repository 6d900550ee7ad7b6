"""Core infrastructure: settings, logging, exceptions, request governor."""

from .config import Settings, get_settings, settings
from .exceptions import (
    AppException,
    BrokerRejection,
    ExternalServiceError,
    NotFoundError,
    PersistenceError,
    RateLimitExceeded,
    RequestTimeout,
    RiskViolation,
    TransientFetchFailure,
    UpstreamValidationError,
    ValidationError,
)


__all__ = [
    "AppException",
    "BrokerRejection",
    "ExternalServiceError",
    "NotFoundError",
    "PersistenceError",
    "RateLimitExceeded",
    "RequestTimeout",
    "RiskViolation",
    "Settings",
    "TransientFetchFailure",
    "UpstreamValidationError",
    "ValidationError",
    "get_settings",
    "settings",
]
