"""Adapters for integrating external payment processors."""

from .base import PaymentProvider
from .exceptions import (
    AuthenticationError,
    BatchOperationError,
    ErrorKind,
    InsufficientFundsError,
    NotFoundError,
    NotSupportedError,
    OperationNotImplementedError,
    PaymentError,
    ProviderError,
    RateLimitError,
    ValidationError,
    WebhookError,
)

__all__ = [
    "PaymentProvider",
    "ErrorKind",
    "PaymentError",
    "NotFoundError",
    "NotSupportedError",
    "OperationNotImplementedError",
    "ValidationError",
    "ProviderError",
    "InsufficientFundsError",
    "RateLimitError",
    "AuthenticationError",
    "WebhookError",
    "BatchOperationError",
]
