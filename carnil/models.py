"""Normalized, vendor-agnostic payment entities and request shapes."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


T = TypeVar("T")


def _coerce_metadata(value: Any) -> Dict[str, str]:
    if not value:
        return {}
    return {str(k): "" if v is None else str(v) for k, v in dict(value).items()}


def _coerce_currency(value: str) -> str:
    code = (value or "").strip().lower()
    if len(code) != 3 or not code.isalpha():
        raise ValueError(f"Invalid currency code: {value!r}")
    return code


# ==================== Enums ====================

class PaymentIntentStatus(str, Enum):
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class RefundStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class SubscriptionStatus(str, Enum):
    INCOMPLETE = "incomplete"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"
    UNCOLLECTIBLE = "uncollectible"
    VOID = "void"


class DisputeStatus(str, Enum):
    NEEDS_RESPONSE = "needs_response"
    UNDER_REVIEW = "under_review"
    WON = "won"
    LOST = "lost"


# ==================== Entities ====================

class Entity(BaseModel):
    """Common fields of every normalized entity."""

    model_config = ConfigDict(frozen=True)

    id: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    created: datetime
    provider: str
    provider_id: str

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> Dict[str, str]:
        return _coerce_metadata(value)


class Customer(Entity):
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    description: Optional[str] = None
    updated: datetime
    deleted: bool = False


class PaymentMethod(Entity):
    customer_id: Optional[str] = None
    type: str
    brand: Optional[str] = None
    last4: Optional[str] = None
    expiry_month: Optional[int] = None
    expiry_year: Optional[int] = None
    is_default: bool = False
    updated: datetime


class PaymentIntent(Entity):
    customer_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: PaymentIntentStatus
    provider_status: Optional[str] = None
    client_secret: Optional[str] = None
    description: Optional[str] = None
    payment_method_id: Optional[str] = None
    receipt_email: Optional[str] = None
    updated: datetime

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: str) -> str:
        return _coerce_currency(value)


class Refund(Entity):
    payment_intent_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: RefundStatus
    reason: Optional[str] = None


class Subscription(Entity):
    customer_id: str
    price_id: str
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False


class Invoice(Entity):
    customer_id: str
    subscription_id: Optional[str] = None
    amount_due: Decimal
    amount_paid: Decimal
    currency: str
    status: InvoiceStatus
    due_date: Optional[datetime] = None


class Dispute(Entity):
    payment_intent_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: DisputeStatus
    reason: Optional[str] = None


class WebhookEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    created: datetime
    provider: str
    livemode: bool = False


class WebhookEndpoint(Entity):
    url: str
    events: List[str] = Field(default_factory=list)
    status: str = "enabled"
    secret: Optional[str] = None


class UsageMetrics(BaseModel):
    customer_id: str
    feature_id: str
    usage: int
    period: str
    timestamp: datetime
    metadata: Dict[str, str] = Field(default_factory=dict)


class AIUsageMetrics(BaseModel):
    customer_id: str
    model_id: str
    tokens: int
    requests: int
    cost: Decimal
    period: str
    timestamp: datetime
    metadata: Dict[str, str] = Field(default_factory=dict)


class Page(BaseModel, Generic[T]):
    """One page of a list operation."""

    items: List[T] = Field(default_factory=list)
    has_more: bool = False
    next_cursor: Optional[str] = None
    prev_cursor: Optional[str] = None


# ==================== Requests ====================

class DateRange(BaseModel):
    gte: Optional[datetime] = None
    lte: Optional[datetime] = None


class ListRequest(BaseModel):
    limit: int = Field(default=10, ge=1, le=100)
    starting_after: Optional[str] = None
    ending_before: Optional[str] = None

    @model_validator(mode="after")
    def _single_cursor(self) -> "ListRequest":
        if self.starting_after and self.ending_before:
            raise ValueError("starting_after and ending_before are mutually exclusive")
        return self


class CustomerListRequest(ListRequest):
    email: Optional[str] = None
    created: Optional[DateRange] = None


class PaymentIntentListRequest(ListRequest):
    customer_id: Optional[str] = None
    created: Optional[DateRange] = None


class CreateCustomerRequest(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> Dict[str, str]:
        return _coerce_metadata(value)


class UpdateCustomerRequest(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> Optional[Dict[str, str]]:
        return None if value is None else _coerce_metadata(value)


class CreatePaymentIntentRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    currency: str
    customer_id: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    payment_method_id: Optional[str] = None
    receipt_email: Optional[str] = None
    capture_method: Literal["automatic", "manual"] = "automatic"

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: str) -> str:
        return _coerce_currency(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> Dict[str, str]:
        return _coerce_metadata(value)


class UpdatePaymentIntentRequest(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0)
    currency: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None
    payment_method_id: Optional[str] = None
    receipt_email: Optional[str] = None

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _coerce_currency(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> Optional[Dict[str, str]]:
        return None if value is None else _coerce_metadata(value)


class CreateRefundRequest(BaseModel):
    payment_intent_id: str
    amount: Optional[Decimal] = Field(default=None, gt=0)
    reason: Optional[Literal["duplicate", "fraudulent", "requested_by_customer"]] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> Dict[str, str]:
        return _coerce_metadata(value)


class CreateSubscriptionRequest(BaseModel):
    customer_id: str
    price_id: str
    payment_method_id: Optional[str] = None
    trial_period_days: Optional[int] = Field(default=None, ge=0)
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> Dict[str, str]:
        return _coerce_metadata(value)


class CreateInvoiceRequest(BaseModel):
    customer_id: str
    subscription_id: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> Dict[str, str]:
        return _coerce_metadata(value)
