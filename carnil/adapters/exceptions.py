"""Exceptions raised by payment provider adapters."""

from enum import Enum
from typing import Any, List, Optional


class ErrorKind(str, Enum):
    """Vendor-agnostic failure categories callers can branch on."""

    NOT_FOUND = "NOT_FOUND"
    NOT_SUPPORTED = "NOT_SUPPORTED"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    BAD_REQUEST = "BAD_REQUEST"
    VENDOR_ERROR = "VENDOR_ERROR"
    PARSE_ERROR = "PARSE_ERROR"


# ==================== Exceptions ====================

class PaymentError(Exception):
    """Base exception for payment-related errors.

    Carries the originating provider and contract operation so a failure can
    be logged with full context without exposing vendor exception types.
    """

    kind: ErrorKind = ErrorKind.VENDOR_ERROR

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        operation: Optional[str] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.operation = operation
        self.code = code
        self.status_code = status_code

    def __str__(self) -> str:
        prefix = ":".join(p for p in (self.provider, self.operation) if p)
        return f"[{prefix}] {self.message}" if prefix else self.message

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "provider": self.provider,
            "operation": self.operation,
            "code": self.code,
            "status_code": self.status_code,
        }


class NotFoundError(PaymentError):
    """Raised when a customer, payment or other resource cannot be found."""
    kind = ErrorKind.NOT_FOUND


class NotSupportedError(PaymentError):
    """Raised when the provider has no way to perform a contract operation."""
    kind = ErrorKind.NOT_SUPPORTED


class OperationNotImplementedError(PaymentError):
    """Raised for contract operations the adapter does not implement yet."""
    kind = ErrorKind.NOT_IMPLEMENTED


class ValidationError(PaymentError):
    """Raised when input validation fails."""
    kind = ErrorKind.BAD_REQUEST


class ProviderError(PaymentError):
    """Raised when the provider reports a failure we cannot classify further."""
    kind = ErrorKind.VENDOR_ERROR


class InsufficientFundsError(ProviderError):
    """Raised when payment fails due to insufficient funds."""
    pass


class RateLimitError(ProviderError):
    """Raised when API rate limits are exceeded."""
    pass


class AuthenticationError(ProviderError):
    """Raised when authentication fails."""
    pass


class WebhookError(PaymentError):
    """Raised when a webhook payload cannot be verified or parsed."""
    kind = ErrorKind.PARSE_ERROR


class BatchOperationError(PaymentError):
    """Raised when an item of a batch create fails.

    ``created`` holds the entities created before the failure so callers can
    reconcile them; the batch itself never reports success.
    """

    def __init__(
        self,
        message: str,
        *,
        cause: PaymentError,
        created: List[Any],
        index: int,
    ) -> None:
        super().__init__(
            message,
            provider=cause.provider,
            operation=cause.operation,
            code=cause.code,
            status_code=cause.status_code,
        )
        self.kind = cause.kind
        self.cause = cause
        self.created = created
        self.index = index


__all__ = [
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
