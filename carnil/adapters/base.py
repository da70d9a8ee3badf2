"""Provider contract and shared helpers for payment processor adapters."""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from ..config import ProviderConfig
from ..models import (
    AIUsageMetrics,
    CreateCustomerRequest,
    CreateInvoiceRequest,
    CreatePaymentIntentRequest,
    CreateRefundRequest,
    CreateSubscriptionRequest,
    Customer,
    CustomerListRequest,
    Dispute,
    Invoice,
    ListRequest,
    Page,
    PaymentIntent,
    PaymentIntentListRequest,
    PaymentMethod,
    Refund,
    Subscription,
    UpdateCustomerRequest,
    UpdatePaymentIntentRequest,
    UsageMetrics,
    WebhookEndpoint,
    WebhookEvent,
)
from .exceptions import (
    BatchOperationError,
    OperationNotImplementedError,
    PaymentError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

MAX_BATCH_SIZE = 100

# Currencies whose minor unit equals the major unit.
ZERO_DECIMAL_CURRENCIES = frozenset({
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
})

THREE_DECIMAL_CURRENCIES = frozenset({"bhd", "jod", "kwd", "omr", "tnd"})


# ==================== Money & time helpers ====================

def currency_exponent(currency: str) -> int:
    code = currency.lower()
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def to_minor_units(amount: Union[Decimal, int, str], currency: str) -> int:
    """Convert a major-unit amount into the integer minor units vendors expect.

    Precision beyond the currency's exponent is rounded half-up; this is the
    only place an amount is ever rounded.
    """
    try:
        value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid amount: {amount}") from exc
    if not value.is_finite():
        raise ValidationError(f"Invalid amount: {amount}")
    exponent = currency_exponent(currency)
    return int((value.scaleb(exponent)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor_units(value: Optional[int], currency: str) -> Decimal:
    """Convert vendor minor units back into a major-unit ``Decimal``."""
    exponent = currency_exponent(currency)
    quantum = Decimal(1).scaleb(-exponent)
    return Decimal(int(value or 0)).scaleb(-exponent).quantize(quantum)


def from_timestamp(value: Optional[int]) -> datetime:
    return datetime.fromtimestamp(int(value or 0), tz=timezone.utc)


def to_timestamp(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def compact(params: Dict[str, Any]) -> Dict[str, Any]:
    """Drop unset (``None``) entries from a vendor request payload."""
    return {k: v for k, v in params.items() if v is not None}


# ==================== Provider contract ====================

class PaymentProvider(ABC):
    """Abstract base class for payment processor adapters.

    Every coroutine either returns a normalized entity reflecting the
    provider's state after the call or raises a ``PaymentError`` subclass.
    Operations an adapter does not implement fall through to the defaults
    below, which raise ``OperationNotImplementedError`` on every call.

    Instances hold only their configuration and a vendor client, so one
    adapter may be shared by concurrent callers. Blocking SDK calls run in a
    worker thread; cancelling the awaiting task does not stop a vendor call
    that is already in flight.
    """

    name: str = ""
    version: str = "1.0.0"
    supported_features: Tuple[str, ...] = ()
    supported_currencies: Tuple[str, ...] = ()
    supported_countries: Tuple[str, ...] = ()
    signature_header: str = ""

    _live_key_prefixes: Tuple[str, ...] = ()
    _vendor_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    # ----- capabilities -----

    @property
    def livemode(self) -> bool:
        if self.config.environment is not None:
            return self.config.environment == "live"
        return self.config.api_key.startswith(self._live_key_prefixes)

    def supports_feature(self, feature: str) -> bool:
        return feature in self.supported_features

    def supports_currency(self, currency: str) -> bool:
        return currency.lower() in self.supported_currencies

    def supports_country(self, country: str) -> bool:
        return country.upper() in self.supported_countries

    def _require_currency(self, currency: str, operation: str) -> str:
        code = currency.lower()
        if not self.supports_currency(code):
            raise ValidationError(
                f"Currency {code} is not supported by {self.name}",
                provider=self.name,
                operation=operation,
            )
        return code

    # ----- vendor call boundary -----

    def _invoke(self, fn: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        return fn(*args, **kwargs)

    async def _call(self, operation: str, fn: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        """Run a blocking SDK call and translate any vendor exception."""
        try:
            return await asyncio.to_thread(self._invoke, fn, *args, **kwargs)
        except self._vendor_errors as exc:
            error = self._translate_error(exc, operation)
            logger.warning(
                "%s %s failed (%s): %s",
                self.name, operation, error.kind.value, error.message,
            )
            raise error from exc

    @abstractmethod
    def _translate_error(self, exc: BaseException, operation: str) -> PaymentError:
        """Map a vendor SDK exception onto the error taxonomy."""

    def _not_implemented(self, operation: str) -> OperationNotImplementedError:
        return OperationNotImplementedError(
            f"{operation} is not implemented for {self.name}",
            provider=self.name,
            operation=operation,
        )

    # ----- health & webhooks -----

    @abstractmethod
    async def health_check(self) -> bool:
        """Issue a cheap idempotent vendor call. Never raises."""

    @abstractmethod
    async def verify_webhook(self, payload: Union[str, bytes], signature: str, secret: str) -> bool:
        """Check a webhook signature. Returns False on any failure."""

    @abstractmethod
    async def parse_webhook(self, payload: Union[str, bytes], signature: str, secret: str) -> WebhookEvent:
        """Verify and normalize a webhook delivery.

        Raises:
            WebhookError: If verification fails or the payload is malformed
        """

    # ----- customers -----

    @abstractmethod
    async def create_customer(self, request: CreateCustomerRequest) -> Customer:
        pass

    @abstractmethod
    async def get_customer(self, customer_id: str) -> Customer:
        pass

    @abstractmethod
    async def update_customer(self, customer_id: str, request: UpdateCustomerRequest) -> Customer:
        pass

    @abstractmethod
    async def delete_customer(self, customer_id: str) -> Customer:
        """Delete a customer and return its final state with ``deleted=True``."""

    @abstractmethod
    async def list_customers(self, request: Optional[CustomerListRequest] = None) -> Page[Customer]:
        pass

    # ----- payment methods -----

    @abstractmethod
    async def list_payment_methods(self, customer_id: str) -> List[PaymentMethod]:
        pass

    @abstractmethod
    async def attach_payment_method(self, customer_id: str, payment_method_id: str) -> PaymentMethod:
        pass

    @abstractmethod
    async def detach_payment_method(self, payment_method_id: str) -> PaymentMethod:
        pass

    @abstractmethod
    async def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> PaymentMethod:
        pass

    # ----- payment intents -----

    @abstractmethod
    async def create_payment_intent(self, request: CreatePaymentIntentRequest) -> PaymentIntent:
        pass

    @abstractmethod
    async def get_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        pass

    @abstractmethod
    async def update_payment_intent(
        self, payment_intent_id: str, request: UpdatePaymentIntentRequest
    ) -> PaymentIntent:
        pass

    @abstractmethod
    async def cancel_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        pass

    @abstractmethod
    async def confirm_payment_intent(
        self, payment_intent_id: str, payment_method_id: Optional[str] = None
    ) -> PaymentIntent:
        pass

    @abstractmethod
    async def capture_payment_intent(
        self, payment_intent_id: str, amount: Optional[Decimal] = None
    ) -> PaymentIntent:
        pass

    @abstractmethod
    async def list_payment_intents(
        self, request: Optional[PaymentIntentListRequest] = None
    ) -> Page[PaymentIntent]:
        pass

    # ----- subscriptions -----

    async def create_subscription(self, request: CreateSubscriptionRequest) -> Subscription:
        raise self._not_implemented("create_subscription")

    async def get_subscription(self, subscription_id: str) -> Subscription:
        raise self._not_implemented("get_subscription")

    async def update_subscription(
        self, subscription_id: str, request: CreateSubscriptionRequest
    ) -> Subscription:
        raise self._not_implemented("update_subscription")

    async def cancel_subscription(self, subscription_id: str, immediately: bool = False) -> Subscription:
        raise self._not_implemented("cancel_subscription")

    async def list_subscriptions(self, request: Optional[ListRequest] = None) -> Page[Subscription]:
        raise self._not_implemented("list_subscriptions")

    # ----- invoices -----

    async def create_invoice(self, request: CreateInvoiceRequest) -> Invoice:
        raise self._not_implemented("create_invoice")

    async def get_invoice(self, invoice_id: str) -> Invoice:
        raise self._not_implemented("get_invoice")

    async def update_invoice(self, invoice_id: str, request: CreateInvoiceRequest) -> Invoice:
        raise self._not_implemented("update_invoice")

    async def finalize_invoice(self, invoice_id: str) -> Invoice:
        raise self._not_implemented("finalize_invoice")

    async def pay_invoice(self, invoice_id: str, payment_method_id: Optional[str] = None) -> Invoice:
        raise self._not_implemented("pay_invoice")

    async def list_invoices(self, request: Optional[ListRequest] = None) -> Page[Invoice]:
        raise self._not_implemented("list_invoices")

    # ----- refunds -----

    async def create_refund(self, request: CreateRefundRequest) -> Refund:
        raise self._not_implemented("create_refund")

    async def get_refund(self, refund_id: str) -> Refund:
        raise self._not_implemented("get_refund")

    async def list_refunds(self, payment_intent_id: Optional[str] = None) -> List[Refund]:
        raise self._not_implemented("list_refunds")

    # ----- disputes -----

    async def get_dispute(self, dispute_id: str) -> Dispute:
        raise self._not_implemented("get_dispute")

    async def list_disputes(self) -> List[Dispute]:
        raise self._not_implemented("list_disputes")

    async def update_dispute(self, dispute_id: str, evidence: Dict[str, str]) -> Dispute:
        raise self._not_implemented("update_dispute")

    # ----- usage -----

    async def track_usage(self, metrics: UsageMetrics) -> None:
        raise self._not_implemented("track_usage")

    async def track_ai_usage(self, metrics: AIUsageMetrics) -> None:
        raise self._not_implemented("track_ai_usage")

    async def get_usage_metrics(self, customer_id: str, feature_id: str, period: str) -> List[UsageMetrics]:
        raise self._not_implemented("get_usage_metrics")

    async def get_ai_usage_metrics(
        self, customer_id: str, model_id: Optional[str] = None, period: Optional[str] = None
    ) -> List[AIUsageMetrics]:
        raise self._not_implemented("get_ai_usage_metrics")

    # ----- webhook endpoints -----

    async def create_webhook_endpoint(self, url: str, events: Sequence[str]) -> WebhookEndpoint:
        raise self._not_implemented("create_webhook_endpoint")

    async def update_webhook_endpoint(
        self, endpoint_id: str, url: str, events: Sequence[str]
    ) -> WebhookEndpoint:
        raise self._not_implemented("update_webhook_endpoint")

    async def delete_webhook_endpoint(self, endpoint_id: str) -> WebhookEndpoint:
        raise self._not_implemented("delete_webhook_endpoint")

    async def list_webhook_endpoints(self) -> List[WebhookEndpoint]:
        raise self._not_implemented("list_webhook_endpoints")

    # ----- batch -----

    async def batch_create_customers(self, requests: Sequence[CreateCustomerRequest]) -> List[Customer]:
        return await self._batch("batch_create_customers", self.create_customer, requests)

    async def batch_create_payment_intents(
        self, requests: Sequence[CreatePaymentIntentRequest]
    ) -> List[PaymentIntent]:
        return await self._batch("batch_create_payment_intents", self.create_payment_intent, requests)

    async def _batch(
        self,
        operation: str,
        create: Callable[[Any], Awaitable[T]],
        requests: Sequence[Any],
    ) -> List[T]:
        if len(requests) > MAX_BATCH_SIZE:
            raise ValidationError(
                f"Batch size {len(requests)} exceeds {MAX_BATCH_SIZE}",
                provider=self.name,
                operation=operation,
            )
        created: List[T] = []
        for index, request in enumerate(requests):
            try:
                created.append(await create(request))
            except PaymentError as exc:
                logger.error(
                    f"{self.name} {operation} stopped at item {index} "
                    f"after {len(created)} created: {exc}"
                )
                raise BatchOperationError(
                    f"Batch item {index} failed: {exc.message}",
                    cause=exc,
                    created=created,
                    index=index,
                ) from exc
        return created


def payload_text(payload: Union[str, bytes, None]) -> Optional[str]:
    """Decode a raw webhook body; ``None`` when it is empty or not UTF-8."""
    if not payload:
        return None
    if isinstance(payload, bytes):
        try:
            return payload.decode("utf-8")
        except UnicodeDecodeError:
            return None
    # Lone surrogates cannot be signed.
    try:
        payload.encode("utf-8")
    except UnicodeEncodeError:
        return None
    return payload


__all__ = [
    "PaymentProvider",
    "MAX_BATCH_SIZE",
    "ZERO_DECIMAL_CURRENCIES",
    "THREE_DECIMAL_CURRENCIES",
    "currency_exponent",
    "to_minor_units",
    "from_minor_units",
    "from_timestamp",
    "to_timestamp",
    "compact",
    "payload_text",
]
