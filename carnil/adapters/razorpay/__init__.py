"""Razorpay payment processor adapter."""

import hashlib
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

import razorpay
import requests
from razorpay.errors import BadRequestError, GatewayError, ServerError, SignatureVerificationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ...config import ProviderConfig
from ...models import (
    CreateCustomerRequest,
    CreatePaymentIntentRequest,
    Customer,
    CustomerListRequest,
    ListRequest,
    Page,
    PaymentIntent,
    PaymentIntentListRequest,
    PaymentIntentStatus,
    PaymentMethod,
    UpdateCustomerRequest,
    UpdatePaymentIntentRequest,
    WebhookEndpoint,
    WebhookEvent,
)
from ..base import (
    PaymentProvider,
    compact,
    from_minor_units,
    from_timestamp,
    payload_text,
    to_minor_units,
    to_timestamp,
)
from ..exceptions import (
    AuthenticationError,
    NotFoundError,
    NotSupportedError,
    PaymentError,
    ProviderError,
    RateLimitError,
    ValidationError,
    WebhookError,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")

PROVIDER = "razorpay"

ORDER_STATUSES: Dict[str, PaymentIntentStatus] = {
    "created": PaymentIntentStatus.REQUIRES_PAYMENT_METHOD,
    "attempted": PaymentIntentStatus.PROCESSING,
    "paid": PaymentIntentStatus.SUCCEEDED,
    "failed": PaymentIntentStatus.FAILED,
}

# Razorpay has no description, customer link or delete flag on these records,
# so they are kept in notes under reserved keys and stripped from metadata.
NOTE_PREFIX = "carnil_"
NOTE_CUSTOMER_ID = "carnil_customer_id"
NOTE_DESCRIPTION = "carnil_description"
NOTE_RECEIPT_EMAIL = "carnil_receipt_email"
NOTE_DELETED = "carnil_deleted"
NOTE_DELETED_AT = "carnil_deleted_at"

OFFSET_PREFIX = "offset:"

WEBHOOK_DASHBOARD_ONLY = "Razorpay webhooks are managed from the dashboard"


def map_order_status(status: Optional[str]) -> PaymentIntentStatus:
    """Fold a Razorpay order status into the normalized enum."""
    return ORDER_STATUSES.get((status or "").lower(), PaymentIntentStatus.REQUIRES_PAYMENT_METHOD)


def _notes(record: Mapping[str, Any]) -> Dict[str, str]:
    # Razorpay serialises empty notes as a JSON list.
    notes = record.get("notes")
    if not isinstance(notes, dict):
        return {}
    return {str(k): "" if v is None else str(v) for k, v in notes.items()}


def _split_notes(notes: Dict[str, str]) -> Tuple[Dict[str, str], Dict[str, str]]:
    reserved = {k: v for k, v in notes.items() if k.startswith(NOTE_PREFIX)}
    metadata = {k: v for k, v in notes.items() if not k.startswith(NOTE_PREFIX)}
    return reserved, metadata


class RazorpayAdapter(PaymentProvider):
    """Razorpay integration built on ``razorpay.Client``.

    Payment intents are backed by Razorpay Orders; the customer completes
    payment in Razorpay Checkout, so confirmation and capture happen client
    side. Razorpay lists only support count/skip, so list cursors are offset
    tokens and paging is approximate if records are created between calls.

    The SDK shares a single ``requests.Session`` which is not documented as
    thread safe, so vendor calls are serialized per adapter instance.
    """

    name = PROVIDER
    signature_header = "X-Razorpay-Signature"
    supported_features = (
        "customers",
        "payments",
        "payment_methods",
        "webhooks",
    )
    supported_currencies = (
        "inr", "usd", "eur", "gbp", "aud", "cad", "sgd", "hkd", "jpy", "aed",
        "sar", "qar", "kwd", "bhd", "omr", "jod", "egp", "try", "uah", "kzt",
        "uzs", "kgs", "tjs", "amd", "azn", "gel", "mdl", "bam", "mkd", "rsd",
        "mnt", "krw", "twd", "thb", "vnd", "idr", "myr", "php", "lkr", "bdt",
        "pkr", "afn", "npr",
    )
    supported_countries = (
        "IN", "US", "CA", "GB", "AU", "AT", "BE", "BG", "BR", "CH", "CY", "CZ",
        "DE", "DK", "EE", "ES", "FI", "FR", "GR", "HR", "HU", "IE", "IT", "JP",
        "LI", "LT", "LU", "LV", "MT", "MX", "MY", "NL", "NO", "NZ", "PL", "PT",
        "RO", "SE", "SG", "SI", "SK", "TH", "ID", "PH", "VN", "KR", "TW", "HK",
    )

    _live_key_prefixes = ("rzp_live_",)
    _vendor_errors = (
        BadRequestError,
        GatewayError,
        ServerError,
        SignatureVerificationError,
        requests.RequestException,
    )

    def __init__(self, config: ProviderConfig, client: Optional[razorpay.Client] = None) -> None:
        if not config.api_secret:
            raise ValidationError(
                "Razorpay requires both a key id and a key secret",
                provider=PROVIDER,
                operation="configure",
            )
        super().__init__(config)
        self._lock = threading.Lock()
        self._timeout = config.timeout_seconds
        if client is None:
            client = razorpay.Client(
                session=self._build_session(config.max_retries),
                auth=(config.api_key, config.api_secret),
            )
            client.set_app_details({"title": "carnil", "version": self.version})
        self._client = client
        # Webhook checks never go through an injected client.
        self._utility = razorpay.Utility()

    @staticmethod
    def _build_session(max_retries: int) -> requests.Session:
        # Only idempotent requests are retried; order and customer creation is not.
        retry = Retry(
            total=max_retries,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"GET", "DELETE"}),
            raise_on_status=False,
        )
        session = requests.Session()
        session.mount("https://", HTTPAdapter(max_retries=retry))
        return session

    def _invoke(self, fn: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        with self._lock:
            return fn(*args, **kwargs)

    def _translate_error(self, exc: BaseException, operation: str) -> PaymentError:
        message = str(exc) or exc.__class__.__name__
        context = dict(provider=self.name, operation=operation)
        lowered = message.lower()

        if isinstance(exc, BadRequestError):
            if "does not exist" in lowered or "not found" in lowered:
                return NotFoundError(message, status_code=404, **context)
            if "authentication" in lowered:
                return AuthenticationError(message, status_code=401, **context)
            if "too many requests" in lowered:
                return RateLimitError(message, status_code=429, **context)
            return ValidationError(message, status_code=400, **context)
        if isinstance(exc, SignatureVerificationError):
            return WebhookError(message, **context)
        if isinstance(exc, requests.RequestException):
            return ProviderError(f"Network error talking to Razorpay: {message}", **context)
        return ProviderError(message, **context)

    def _not_supported(self, operation: str, reason: str) -> NotSupportedError:
        return NotSupportedError(reason, provider=self.name, operation=operation)

    # ========================================================================
    # Health & webhooks
    # ========================================================================

    async def health_check(self) -> bool:
        try:
            await self._call(
                "health_check", self._client.order.all, {"count": 1}, timeout=self._timeout
            )
            return True
        except Exception as exc:
            logger.warning(f"Razorpay health check failed: {exc}")
            return False

    async def verify_webhook(self, payload: Union[str, bytes], signature: str, secret: str) -> bool:
        text = payload_text(payload)
        if text is None or not signature or not secret:
            return False
        try:
            return self._utility.verify_webhook_signature(text, signature, secret)
        except (SignatureVerificationError, TypeError, ValueError):
            return False

    async def parse_webhook(
        self, payload: Union[str, bytes], signature: str, secret: str
    ) -> WebhookEvent:
        context = dict(provider=self.name, operation="parse_webhook")
        if not await self.verify_webhook(payload, signature, secret):
            raise WebhookError("Webhook signature verification failed", **context)

        text = payload_text(payload)
        try:
            body = json.loads(text)
        except ValueError as exc:
            raise WebhookError(f"Webhook payload is not valid JSON: {exc}", **context) from exc
        if not isinstance(body, dict):
            raise WebhookError("Webhook payload must be a JSON object", **context)

        event_type, created = body.get("event"), body.get("created_at")
        if not isinstance(event_type, str) or not event_type:
            raise WebhookError("Webhook payload is missing event type", **context)
        if not isinstance(created, int) or isinstance(created, bool):
            raise WebhookError("Webhook payload is missing created_at timestamp", **context)

        # The event id travels in the X-Razorpay-Event-Id header, not the body.
        event_id = body.get("id")
        if not isinstance(event_id, str) or not event_id:
            event_id = "evt_" + hashlib.sha256(text.encode("utf-8")).hexdigest()[:24]

        data = body.get("payload")
        return WebhookEvent(
            id=event_id,
            type=event_type,
            data=data if isinstance(data, dict) else {},
            created=from_timestamp(created),
            provider=self.name,
            livemode=self.livemode,
        )

    # ========================================================================
    # Customers
    # ========================================================================

    async def create_customer(self, request: CreateCustomerRequest) -> Customer:
        notes = dict(request.metadata)
        if request.description:
            notes[NOTE_DESCRIPTION] = request.description
        customer = await self._call(
            "create_customer",
            self._client.customer.create,
            compact({
                "name": request.name,
                "email": request.email,
                "contact": request.phone,
                "notes": notes or None,
            }),
            timeout=self._timeout,
        )
        return self._map_customer(customer)

    async def get_customer(self, customer_id: str) -> Customer:
        customer = await self._call(
            "get_customer", self._client.customer.fetch, customer_id, timeout=self._timeout
        )
        return self._map_customer(customer)

    async def update_customer(self, customer_id: str, request: UpdateCustomerRequest) -> Customer:
        data: Dict[str, Any] = compact({
            "name": request.name,
            "email": request.email,
            "contact": request.phone,
        })
        if request.metadata is not None or request.description is not None:
            current = await self._call(
                "update_customer", self._client.customer.fetch, customer_id, timeout=self._timeout
            )
            reserved, metadata = _split_notes(_notes(current))
            if request.metadata is not None:
                metadata = dict(request.metadata)
            if request.description is not None:
                reserved[NOTE_DESCRIPTION] = request.description
            data["notes"] = {**metadata, **reserved}

        customer = await self._call(
            "update_customer", self._client.customer.edit, customer_id, data, timeout=self._timeout
        )
        return self._map_customer(customer)

    async def delete_customer(self, customer_id: str) -> Customer:
        """Soft delete: Razorpay cannot delete customers, so they are tagged.

        The customer stays retrievable; ``get_customer`` and ``list_customers``
        report it with ``deleted=True``.
        """
        current = await self._call(
            "delete_customer", self._client.customer.fetch, customer_id, timeout=self._timeout
        )
        notes = _notes(current)
        notes[NOTE_DELETED] = "true"
        notes[NOTE_DELETED_AT] = datetime.now(timezone.utc).isoformat()
        customer = await self._call(
            "delete_customer",
            self._client.customer.edit,
            customer_id,
            {"notes": notes},
            timeout=self._timeout,
        )
        logger.info(f"Soft-deleted Razorpay customer {customer_id}")
        return self._map_customer(customer)

    async def list_customers(self, request: Optional[CustomerListRequest] = None) -> Page[Customer]:
        request = request or CustomerListRequest()
        if request.email or request.created:
            raise self._not_supported(
                "list_customers", "Razorpay cannot filter customers by email or creation date"
            )
        skip, count = self._window(request, "list_customers")
        if count == 0:
            return self._page({}, skip, count, self._map_customer)
        result = await self._call(
            "list_customers",
            self._client.customer.all,
            {"count": count, "skip": skip},
            timeout=self._timeout,
        )
        return self._page(result, skip, count, self._map_customer)

    # ========================================================================
    # Payment methods
    # ========================================================================

    async def list_payment_methods(self, customer_id: str) -> List[PaymentMethod]:
        result = await self._call(
            "list_payment_methods", self._client.token.all, customer_id, timeout=self._timeout
        )
        return [self._map_token(token, customer_id) for token in result.get("items") or []]

    async def attach_payment_method(self, customer_id: str, payment_method_id: str) -> PaymentMethod:
        raise self._not_supported(
            "attach_payment_method", "Razorpay saves payment methods during checkout"
        )

    async def detach_payment_method(self, payment_method_id: str) -> PaymentMethod:
        raise self._not_supported(
            "detach_payment_method", "Razorpay tokens can only be removed per customer"
        )

    async def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> PaymentMethod:
        raise self._not_supported(
            "set_default_payment_method", "Razorpay has no default payment method"
        )

    # ========================================================================
    # Payment intents (orders)
    # ========================================================================

    async def create_payment_intent(self, request: CreatePaymentIntentRequest) -> PaymentIntent:
        operation = "create_payment_intent"
        currency = self._require_currency(request.currency, operation)
        if request.capture_method == "manual":
            raise self._not_supported(operation, "Razorpay orders are captured automatically")
        if request.payment_method_id:
            raise self._not_supported(operation, "Razorpay selects the payment method in checkout")

        notes = dict(request.metadata)
        notes.update(compact({
            NOTE_CUSTOMER_ID: request.customer_id,
            NOTE_DESCRIPTION: request.description,
            NOTE_RECEIPT_EMAIL: request.receipt_email,
        }))
        order = await self._call(
            operation,
            self._client.order.create,
            compact({
                "amount": to_minor_units(request.amount, currency),
                "currency": currency.upper(),
                "receipt": f"rcpt_{uuid.uuid4().hex[:24]}",
                "notes": notes or None,
            }),
            timeout=self._timeout,
        )
        return self._map_order(order)

    async def get_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        order = await self._call(
            "get_payment_intent", self._client.order.fetch, payment_intent_id, timeout=self._timeout
        )
        return self._map_order(order)

    async def update_payment_intent(
        self, payment_intent_id: str, request: UpdatePaymentIntentRequest
    ) -> PaymentIntent:
        operation = "update_payment_intent"
        if any(v is not None for v in (
            request.amount, request.currency, request.payment_method_id, request.receipt_email
        )):
            raise self._not_supported(operation, "Razorpay orders only allow notes to change")

        current = await self._call(
            operation, self._client.order.fetch, payment_intent_id, timeout=self._timeout
        )
        if request.metadata is None and request.description is None:
            return self._map_order(current)

        reserved, metadata = _split_notes(_notes(current))
        if request.metadata is not None:
            metadata = dict(request.metadata)
        if request.description is not None:
            reserved[NOTE_DESCRIPTION] = request.description
        order = await self._call(
            operation,
            self._client.order.edit,
            payment_intent_id,
            {"notes": {**metadata, **reserved}},
            timeout=self._timeout,
        )
        return self._map_order(order)

    async def cancel_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        raise self._not_supported("cancel_payment_intent", "Razorpay orders cannot be cancelled")

    async def confirm_payment_intent(
        self, payment_intent_id: str, payment_method_id: Optional[str] = None
    ) -> PaymentIntent:
        """Razorpay Checkout confirms on the client; this returns the order state."""
        if payment_method_id:
            raise self._not_supported(
                "confirm_payment_intent", "Razorpay selects the payment method in checkout"
            )
        order = await self._call(
            "confirm_payment_intent", self._client.order.fetch, payment_intent_id, timeout=self._timeout
        )
        return self._map_order(order)

    async def capture_payment_intent(
        self, payment_intent_id: str, amount: Optional[Decimal] = None
    ) -> PaymentIntent:
        raise self._not_supported("capture_payment_intent", "Razorpay orders have no capture step")

    async def list_payment_intents(
        self, request: Optional[PaymentIntentListRequest] = None
    ) -> Page[PaymentIntent]:
        request = request or PaymentIntentListRequest()
        if request.customer_id:
            raise self._not_supported(
                "list_payment_intents", "Razorpay cannot filter orders by customer"
            )
        skip, count = self._window(request, "list_payment_intents")
        if count == 0:
            return self._page({}, skip, count, self._map_order)
        params: Dict[str, Any] = {"count": count, "skip": skip}
        if request.created is not None:
            params.update(compact({
                "from": to_timestamp(request.created.gte) if request.created.gte else None,
                "to": to_timestamp(request.created.lte) if request.created.lte else None,
            }))
        result = await self._call(
            "list_payment_intents", self._client.order.all, params, timeout=self._timeout
        )
        return self._page(result, skip, count, self._map_order)

    # ========================================================================
    # Webhook endpoints
    # ========================================================================

    async def create_webhook_endpoint(self, url: str, events: Sequence[str]) -> WebhookEndpoint:
        raise self._not_supported("create_webhook_endpoint", WEBHOOK_DASHBOARD_ONLY)

    async def update_webhook_endpoint(
        self, endpoint_id: str, url: str, events: Sequence[str]
    ) -> WebhookEndpoint:
        raise self._not_supported("update_webhook_endpoint", WEBHOOK_DASHBOARD_ONLY)

    async def delete_webhook_endpoint(self, endpoint_id: str) -> WebhookEndpoint:
        raise self._not_supported("delete_webhook_endpoint", WEBHOOK_DASHBOARD_ONLY)

    async def list_webhook_endpoints(self) -> List[WebhookEndpoint]:
        raise self._not_supported("list_webhook_endpoints", WEBHOOK_DASHBOARD_ONLY)

    # ========================================================================
    # Paging
    # ========================================================================

    def _window(self, request: ListRequest, operation: str) -> Tuple[int, int]:
        """Return the ``(skip, count)`` slice a list request addresses."""
        cursor = request.starting_after or request.ending_before
        if cursor is None:
            return 0, request.limit
        try:
            if not cursor.startswith(OFFSET_PREFIX):
                raise ValueError(cursor)
            position = int(cursor[len(OFFSET_PREFIX):])
            if position < 0:
                raise ValueError(cursor)
        except ValueError:
            raise ValidationError(
                f"Invalid Razorpay cursor {cursor!r}; pass a cursor returned by a list call",
                provider=self.name,
                operation=operation,
            ) from None
        if request.ending_before:
            # Never reach past the cursor when fewer than limit records precede it.
            skip = max(0, position - request.limit)
            return skip, position - skip
        return position, request.limit

    @staticmethod
    def _page(result: Mapping[str, Any], skip: int, count: int, mapper) -> Page:
        items = [mapper(obj) for obj in result.get("items") or []]
        return Page(
            items=items,
            # Razorpay returns no total; a full page may or may not be the last.
            has_more=bool(items) and len(items) == count,
            next_cursor=f"{OFFSET_PREFIX}{skip + len(items)}" if items else None,
            prev_cursor=f"{OFFSET_PREFIX}{skip}" if skip > 0 else None,
        )

    # ========================================================================
    # Mapping
    # ========================================================================

    def _map_customer(self, customer: Mapping[str, Any]) -> Customer:
        reserved, metadata = _split_notes(_notes(customer))
        created = from_timestamp(customer.get("created_at"))
        return Customer(
            id=customer["id"],
            email=customer.get("email") or None,
            name=customer.get("name") or None,
            phone=customer.get("contact") or None,
            description=reserved.get(NOTE_DESCRIPTION),
            metadata=metadata,
            created=created,
            updated=created,
            deleted=reserved.get(NOTE_DELETED) == "true",
            provider=self.name,
            provider_id=customer["id"],
        )

    def _map_order(self, order: Mapping[str, Any]) -> PaymentIntent:
        reserved, metadata = _split_notes(_notes(order))
        currency = str(order["currency"]).lower()
        created = from_timestamp(order.get("created_at"))
        return PaymentIntent(
            id=order["id"],
            customer_id=reserved.get(NOTE_CUSTOMER_ID),
            amount=from_minor_units(order.get("amount"), currency),
            currency=currency,
            status=map_order_status(order.get("status")),
            provider_status=order.get("status"),
            # Checkout is opened with the order id.
            client_secret=order["id"],
            description=reserved.get(NOTE_DESCRIPTION),
            metadata=metadata,
            receipt_email=reserved.get(NOTE_RECEIPT_EMAIL),
            created=created,
            updated=created,
            provider=self.name,
            provider_id=order["id"],
        )

    def _map_token(self, token: Mapping[str, Any], customer_id: str) -> PaymentMethod:
        card = token.get("card") or {}
        created = from_timestamp(token.get("created_at"))
        return PaymentMethod(
            id=token["id"],
            customer_id=customer_id,
            type=token.get("method") or "card",
            brand=card.get("network"),
            last4=card.get("last4"),
            expiry_month=card.get("expiry_month") or None,
            expiry_year=card.get("expiry_year") or None,
            is_default=False,
            metadata=_notes(token),
            created=created,
            updated=created,
            provider=self.name,
            provider_id=token["id"],
        )


__all__ = ["RazorpayAdapter", "map_order_status"]
