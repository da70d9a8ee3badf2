"""Stripe payment processor adapter."""

import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import stripe

from ...config import ProviderConfig
from ...models import (
    CreateCustomerRequest,
    CreatePaymentIntentRequest,
    CreateRefundRequest,
    Customer,
    CustomerListRequest,
    DateRange,
    Page,
    PaymentIntent,
    PaymentIntentListRequest,
    PaymentIntentStatus,
    PaymentMethod,
    Refund,
    RefundStatus,
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
    InsufficientFundsError,
    NotFoundError,
    PaymentError,
    ProviderError,
    RateLimitError,
    ValidationError,
    WebhookError,
)

logger = logging.getLogger(__name__)

PROVIDER = "stripe"

# Stripe has no terminal "failed" intent status: a failed attempt returns the
# intent to requires_payment_method with last_payment_error set.
PAYMENT_INTENT_STATUSES: Dict[str, PaymentIntentStatus] = {
    "requires_payment_method": PaymentIntentStatus.REQUIRES_PAYMENT_METHOD,
    "requires_confirmation": PaymentIntentStatus.REQUIRES_PAYMENT_METHOD,
    "requires_action": PaymentIntentStatus.REQUIRES_PAYMENT_METHOD,
    "processing": PaymentIntentStatus.PROCESSING,
    "requires_capture": PaymentIntentStatus.PROCESSING,
    "succeeded": PaymentIntentStatus.SUCCEEDED,
    "canceled": PaymentIntentStatus.CANCELED,
}

REFUND_STATUSES: Dict[str, RefundStatus] = {
    "pending": RefundStatus.PENDING,
    "requires_action": RefundStatus.PENDING,
    "succeeded": RefundStatus.SUCCEEDED,
    "failed": RefundStatus.FAILED,
    "canceled": RefundStatus.CANCELED,
}


def map_payment_intent_status(
    status: Optional[str], last_payment_error: Any = None
) -> PaymentIntentStatus:
    """Fold a Stripe intent status into the normalized enum."""
    normalized = PAYMENT_INTENT_STATUSES.get(
        (status or "").lower(), PaymentIntentStatus.REQUIRES_PAYMENT_METHOD
    )
    if normalized is PaymentIntentStatus.REQUIRES_PAYMENT_METHOD and last_payment_error:
        return PaymentIntentStatus.FAILED
    return normalized


def map_refund_status(status: Optional[str]) -> RefundStatus:
    return REFUND_STATUSES.get((status or "").lower(), RefundStatus.PENDING)


def _object_id(value: Any) -> Optional[str]:
    """Stripe returns related objects either as ids or expanded objects."""
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def _created_range(created: Optional[DateRange]) -> Optional[Dict[str, int]]:
    if created is None:
        return None
    return compact({
        "gte": to_timestamp(created.gte) if created.gte else None,
        "lte": to_timestamp(created.lte) if created.lte else None,
    }) or None


class StripeAdapter(PaymentProvider):
    """Stripe integration built on ``stripe.StripeClient``.

    The client is instance scoped, so several adapters with different keys can
    live in one process. Its requests transport keeps a session per thread and
    is safe to share across concurrent calls. Timeouts and network retries are
    delegated to the client.
    """

    name = PROVIDER
    signature_header = "Stripe-Signature"
    supported_features = (
        "customers",
        "payments",
        "payment_methods",
        "refunds",
        "webhooks",
        "webhook_endpoints",
    )
    supported_currencies = (
        "usd", "eur", "gbp", "cad", "aud", "jpy", "chf", "sek", "nok", "dkk",
        "pln", "czk", "huf", "bgn", "ron", "try", "uah", "kzt", "uzs", "kgs",
        "tjs", "amd", "azn", "gel", "mdl", "bam", "mkd", "rsd", "mnt", "krw",
        "sgd", "hkd", "twd", "thb", "vnd", "idr", "myr", "php", "inr", "lkr",
        "bdt", "pkr", "afn", "npr",
    )
    supported_countries = (
        "US", "CA", "GB", "AU", "AT", "BE", "BG", "BR", "CH", "CY", "CZ", "DE",
        "DK", "EE", "ES", "FI", "FR", "GR", "HR", "HU", "IE", "IT", "JP", "LI",
        "LT", "LU", "LV", "MT", "MX", "MY", "NL", "NO", "NZ", "PL", "PT", "RO",
        "SE", "SG", "SI", "SK", "TH", "IN", "ID", "PH", "VN", "KR", "TW", "HK",
    )

    _live_key_prefixes = ("sk_live_", "rk_live_")
    _vendor_errors = (stripe.StripeError,)

    def __init__(
        self, config: ProviderConfig, client: Optional[stripe.StripeClient] = None
    ) -> None:
        super().__init__(config)
        self._client = client or stripe.StripeClient(
            config.api_key,
            max_network_retries=config.max_retries,
            http_client=stripe.RequestsClient(timeout=config.timeout_seconds),
        )

    def _translate_error(self, exc: BaseException, operation: str) -> PaymentError:
        message = getattr(exc, "user_message", None) or str(exc) or exc.__class__.__name__
        code = getattr(exc, "code", None)
        status_code = getattr(exc, "http_status", None)
        context = dict(provider=self.name, operation=operation, code=code, status_code=status_code)

        if isinstance(exc, stripe.InvalidRequestError):
            if code == "resource_missing" or status_code == 404:
                return NotFoundError(message, **context)
            return ValidationError(message, **context)
        if isinstance(exc, stripe.CardError):
            decline_code = getattr(getattr(exc, "error", None), "decline_code", None)
            if "insufficient_funds" in (code, decline_code):
                return InsufficientFundsError(message, **context)
            return ProviderError(message, **context)
        if isinstance(exc, stripe.RateLimitError):
            return RateLimitError(message, **context)
        if isinstance(exc, (stripe.AuthenticationError, stripe.PermissionError)):
            return AuthenticationError(message, **context)
        if isinstance(exc, stripe.SignatureVerificationError):
            return WebhookError(message, **context)
        return ProviderError(message, **context)

    # ========================================================================
    # Health & webhooks
    # ========================================================================

    async def health_check(self) -> bool:
        try:
            await self._call("health_check", self._client.balance.retrieve)
            return True
        except Exception as exc:
            logger.warning(f"Stripe health check failed: {exc}")
            return False

    async def verify_webhook(self, payload: Union[str, bytes], signature: str, secret: str) -> bool:
        text = payload_text(payload)
        if text is None or not signature or not secret:
            return False
        try:
            return self._verify_header(text, signature, secret)
        except (stripe.SignatureVerificationError, TypeError, ValueError) as exc:
            logger.info("Stripe webhook verification failed: %s", exc)
            return False

    @staticmethod
    def _verify_header(text: str, signature: str, secret: str) -> bool:
        return stripe.WebhookSignature.verify_header(
            text, signature, secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
        )

    async def parse_webhook(
        self, payload: Union[str, bytes], signature: str, secret: str
    ) -> WebhookEvent:
        context = dict(provider=self.name, operation="parse_webhook")
        text = payload_text(payload)
        if text is None:
            raise WebhookError("Webhook payload is empty or not UTF-8", **context)
        if not signature or not secret:
            raise WebhookError("Webhook signature and secret are required", **context)

        try:
            self._verify_header(text, signature, secret)
        except (stripe.SignatureVerificationError, TypeError, ValueError) as exc:
            raise WebhookError(f"Webhook signature verification failed: {exc}", **context) from exc

        try:
            body = json.loads(text)
        except ValueError as exc:
            raise WebhookError(f"Webhook payload is not valid JSON: {exc}", **context) from exc
        if not isinstance(body, dict):
            raise WebhookError("Webhook payload must be a JSON object", **context)
        event_id, event_type, created = body.get("id"), body.get("type"), body.get("created")
        if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str) or not event_type:
            raise WebhookError("Webhook payload is missing id or type", **context)
        if not isinstance(created, int) or isinstance(created, bool):
            raise WebhookError("Webhook payload is missing created timestamp", **context)

        data = body.get("data")
        return WebhookEvent(
            id=event_id,
            type=event_type,
            data=data if isinstance(data, dict) else {},
            created=from_timestamp(created),
            provider=self.name,
            livemode=bool(body.get("livemode", False)),
        )

    # ========================================================================
    # Customers
    # ========================================================================

    async def create_customer(self, request: CreateCustomerRequest) -> Customer:
        customer = await self._call(
            "create_customer",
            self._client.customers.create,
            params=compact({
                "email": request.email,
                "name": request.name,
                "phone": request.phone,
                "description": request.description,
                "metadata": request.metadata or None,
            }),
        )
        return self._map_customer(customer)

    async def get_customer(self, customer_id: str) -> Customer:
        customer = await self._call("get_customer", self._client.customers.retrieve, customer_id)
        if customer.get("deleted"):
            raise NotFoundError(
                f"Customer {customer_id} has been deleted",
                provider=self.name,
                operation="get_customer",
                code="resource_missing",
                status_code=404,
            )
        return self._map_customer(customer)

    async def update_customer(self, customer_id: str, request: UpdateCustomerRequest) -> Customer:
        customer = await self._call(
            "update_customer",
            self._client.customers.update,
            customer_id,
            params=compact({
                "email": request.email,
                "name": request.name,
                "phone": request.phone,
                "description": request.description,
                "metadata": request.metadata,
            }),
        )
        return self._map_customer(customer)

    async def delete_customer(self, customer_id: str) -> Customer:
        customer = await self.get_customer(customer_id)
        await self._call("delete_customer", self._client.customers.delete, customer_id)
        logger.info(f"Deleted Stripe customer {customer_id}")
        return customer.model_copy(update={"deleted": True})

    async def list_customers(self, request: Optional[CustomerListRequest] = None) -> Page[Customer]:
        request = request or CustomerListRequest()
        result = await self._call(
            "list_customers",
            self._client.customers.list,
            params=compact({
                "limit": request.limit,
                "starting_after": request.starting_after,
                "ending_before": request.ending_before,
                "email": request.email,
                "created": _created_range(request.created),
            }),
        )
        return self._page(result, self._map_customer)

    # ========================================================================
    # Payment methods
    # ========================================================================

    async def list_payment_methods(self, customer_id: str) -> List[PaymentMethod]:
        customer = await self._call(
            "list_payment_methods", self._client.customers.retrieve, customer_id
        )
        if customer.get("deleted"):
            raise NotFoundError(
                f"Customer {customer_id} has been deleted",
                provider=self.name,
                operation="list_payment_methods",
            )
        default_id = _object_id((customer.get("invoice_settings") or {}).get("default_payment_method"))
        result = await self._call(
            "list_payment_methods",
            self._client.payment_methods.list,
            params={"customer": customer_id, "type": "card"},
        )
        return [self._map_payment_method(pm, default_id) for pm in result.get("data") or []]

    async def attach_payment_method(self, customer_id: str, payment_method_id: str) -> PaymentMethod:
        payment_method = await self._call(
            "attach_payment_method",
            self._client.payment_methods.attach,
            payment_method_id,
            params={"customer": customer_id},
        )
        return self._map_payment_method(payment_method)

    async def detach_payment_method(self, payment_method_id: str) -> PaymentMethod:
        payment_method = await self._call(
            "detach_payment_method", self._client.payment_methods.detach, payment_method_id
        )
        return self._map_payment_method(payment_method)

    async def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> PaymentMethod:
        await self._call(
            "set_default_payment_method",
            self._client.customers.update,
            customer_id,
            params={"invoice_settings": {"default_payment_method": payment_method_id}},
        )
        payment_method = await self._call(
            "set_default_payment_method",
            self._client.payment_methods.retrieve,
            payment_method_id,
        )
        return self._map_payment_method(payment_method, payment_method_id)

    # ========================================================================
    # Payment intents
    # ========================================================================

    async def create_payment_intent(self, request: CreatePaymentIntentRequest) -> PaymentIntent:
        currency = self._require_currency(request.currency, "create_payment_intent")
        payment_intent = await self._call(
            "create_payment_intent",
            self._client.payment_intents.create,
            params=compact({
                "amount": to_minor_units(request.amount, currency),
                "currency": currency,
                "customer": request.customer_id,
                "description": request.description,
                "metadata": request.metadata or None,
                "payment_method": request.payment_method_id,
                "receipt_email": request.receipt_email,
                "capture_method": request.capture_method,
            }),
        )
        return self._map_payment_intent(payment_intent)

    async def get_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        payment_intent = await self._call(
            "get_payment_intent", self._client.payment_intents.retrieve, payment_intent_id
        )
        return self._map_payment_intent(payment_intent)

    async def update_payment_intent(
        self, payment_intent_id: str, request: UpdatePaymentIntentRequest
    ) -> PaymentIntent:
        params: Dict[str, Any] = compact({
            "description": request.description,
            "metadata": request.metadata,
            "payment_method": request.payment_method_id,
            "receipt_email": request.receipt_email,
        })
        if request.currency is not None:
            params["currency"] = self._require_currency(request.currency, "update_payment_intent")
        if request.amount is not None:
            currency = params.get("currency") or await self._intent_currency(
                payment_intent_id, "update_payment_intent"
            )
            params["amount"] = to_minor_units(request.amount, currency)

        payment_intent = await self._call(
            "update_payment_intent",
            self._client.payment_intents.update,
            payment_intent_id,
            params=params,
        )
        return self._map_payment_intent(payment_intent)

    async def cancel_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        payment_intent = await self._call(
            "cancel_payment_intent", self._client.payment_intents.cancel, payment_intent_id
        )
        return self._map_payment_intent(payment_intent)

    async def confirm_payment_intent(
        self, payment_intent_id: str, payment_method_id: Optional[str] = None
    ) -> PaymentIntent:
        payment_intent = await self._call(
            "confirm_payment_intent",
            self._client.payment_intents.confirm,
            payment_intent_id,
            params=compact({"payment_method": payment_method_id}),
        )
        return self._map_payment_intent(payment_intent)

    async def capture_payment_intent(
        self, payment_intent_id: str, amount: Optional[Decimal] = None
    ) -> PaymentIntent:
        params: Dict[str, Any] = {}
        if amount is not None:
            currency = await self._intent_currency(payment_intent_id, "capture_payment_intent")
            params["amount_to_capture"] = to_minor_units(amount, currency)
        payment_intent = await self._call(
            "capture_payment_intent",
            self._client.payment_intents.capture,
            payment_intent_id,
            params=params,
        )
        return self._map_payment_intent(payment_intent)

    async def list_payment_intents(
        self, request: Optional[PaymentIntentListRequest] = None
    ) -> Page[PaymentIntent]:
        request = request or PaymentIntentListRequest()
        result = await self._call(
            "list_payment_intents",
            self._client.payment_intents.list,
            params=compact({
                "limit": request.limit,
                "starting_after": request.starting_after,
                "ending_before": request.ending_before,
                "customer": request.customer_id,
                "created": _created_range(request.created),
            }),
        )
        return self._page(result, self._map_payment_intent)

    async def _intent_currency(self, payment_intent_id: str, operation: str) -> str:
        payment_intent = await self._call(
            operation, self._client.payment_intents.retrieve, payment_intent_id
        )
        return payment_intent["currency"]

    # ========================================================================
    # Refunds
    # ========================================================================

    async def create_refund(self, request: CreateRefundRequest) -> Refund:
        params: Dict[str, Any] = compact({
            "payment_intent": request.payment_intent_id,
            "reason": request.reason,
            "metadata": request.metadata or None,
        })
        if request.amount is not None:
            currency = await self._intent_currency(request.payment_intent_id, "create_refund")
            params["amount"] = to_minor_units(request.amount, currency)
        refund = await self._call("create_refund", self._client.refunds.create, params=params)
        return self._map_refund(refund)

    async def get_refund(self, refund_id: str) -> Refund:
        refund = await self._call("get_refund", self._client.refunds.retrieve, refund_id)
        return self._map_refund(refund)

    async def list_refunds(self, payment_intent_id: Optional[str] = None) -> List[Refund]:
        result = await self._call(
            "list_refunds",
            self._client.refunds.list,
            params=compact({"payment_intent": payment_intent_id, "limit": 100}),
        )
        return [self._map_refund(refund) for refund in result.get("data") or []]

    # ========================================================================
    # Webhook endpoints
    # ========================================================================

    async def create_webhook_endpoint(self, url: str, events: Sequence[str]) -> WebhookEndpoint:
        endpoint = await self._call(
            "create_webhook_endpoint",
            self._client.webhook_endpoints.create,
            params={"url": url, "enabled_events": list(events)},
        )
        return self._map_webhook_endpoint(endpoint)

    async def update_webhook_endpoint(
        self, endpoint_id: str, url: str, events: Sequence[str]
    ) -> WebhookEndpoint:
        endpoint = await self._call(
            "update_webhook_endpoint",
            self._client.webhook_endpoints.update,
            endpoint_id,
            params={"url": url, "enabled_events": list(events)},
        )
        return self._map_webhook_endpoint(endpoint)

    async def delete_webhook_endpoint(self, endpoint_id: str) -> WebhookEndpoint:
        endpoint = await self._call(
            "delete_webhook_endpoint", self._client.webhook_endpoints.retrieve, endpoint_id
        )
        await self._call(
            "delete_webhook_endpoint", self._client.webhook_endpoints.delete, endpoint_id
        )
        return self._map_webhook_endpoint(endpoint).model_copy(update={"status": "deleted"})

    async def list_webhook_endpoints(self) -> List[WebhookEndpoint]:
        result = await self._call(
            "list_webhook_endpoints",
            self._client.webhook_endpoints.list,
            params={"limit": 100},
        )
        return [self._map_webhook_endpoint(endpoint) for endpoint in result.get("data") or []]

    # ========================================================================
    # Mapping
    # ========================================================================

    @staticmethod
    def _page(result: Mapping[str, Any], mapper) -> Page:
        items = [mapper(obj) for obj in result.get("data") or []]
        return Page(
            items=items,
            has_more=bool(result.get("has_more")),
            next_cursor=items[-1].id if items else None,
            prev_cursor=items[0].id if items else None,
        )

    def _map_customer(self, customer: Mapping[str, Any]) -> Customer:
        created = from_timestamp(customer.get("created"))
        return Customer(
            id=customer["id"],
            email=customer.get("email"),
            name=customer.get("name"),
            phone=customer.get("phone"),
            description=customer.get("description"),
            metadata=customer.get("metadata"),
            created=created,
            # Stripe does not track an update time.
            updated=created,
            deleted=bool(customer.get("deleted", False)),
            provider=self.name,
            provider_id=customer["id"],
        )

    def _map_payment_method(
        self, payment_method: Mapping[str, Any], default_id: Optional[str] = None
    ) -> PaymentMethod:
        card = payment_method.get("card") or {}
        created = from_timestamp(payment_method.get("created"))
        return PaymentMethod(
            id=payment_method["id"],
            customer_id=_object_id(payment_method.get("customer")),
            type=payment_method.get("type") or "card",
            brand=card.get("brand"),
            last4=card.get("last4"),
            expiry_month=card.get("exp_month"),
            expiry_year=card.get("exp_year"),
            is_default=default_id is not None and payment_method["id"] == default_id,
            metadata=payment_method.get("metadata"),
            created=created,
            updated=created,
            provider=self.name,
            provider_id=payment_method["id"],
        )

    def _map_payment_intent(self, payment_intent: Mapping[str, Any]) -> PaymentIntent:
        currency = payment_intent["currency"]
        created = from_timestamp(payment_intent.get("created"))
        return PaymentIntent(
            id=payment_intent["id"],
            customer_id=_object_id(payment_intent.get("customer")),
            amount=from_minor_units(payment_intent.get("amount"), currency),
            currency=currency,
            status=map_payment_intent_status(
                payment_intent.get("status"), payment_intent.get("last_payment_error")
            ),
            provider_status=payment_intent.get("status"),
            client_secret=payment_intent.get("client_secret"),
            description=payment_intent.get("description"),
            metadata=payment_intent.get("metadata"),
            payment_method_id=_object_id(payment_intent.get("payment_method")),
            receipt_email=payment_intent.get("receipt_email"),
            created=created,
            updated=created,
            provider=self.name,
            provider_id=payment_intent["id"],
        )

    def _map_refund(self, refund: Mapping[str, Any]) -> Refund:
        currency = refund["currency"]
        return Refund(
            id=refund["id"],
            payment_intent_id=_object_id(refund.get("payment_intent")),
            amount=from_minor_units(refund.get("amount"), currency),
            currency=currency,
            status=map_refund_status(refund.get("status")),
            reason=refund.get("reason"),
            metadata=refund.get("metadata"),
            created=from_timestamp(refund.get("created")),
            provider=self.name,
            provider_id=refund["id"],
        )

    def _map_webhook_endpoint(self, endpoint: Mapping[str, Any]) -> WebhookEndpoint:
        return WebhookEndpoint(
            id=endpoint["id"],
            url=endpoint.get("url") or "",
            events=list(endpoint.get("enabled_events") or []),
            status=endpoint.get("status") or "enabled",
            secret=endpoint.get("secret"),
            metadata=endpoint.get("metadata"),
            created=from_timestamp(endpoint.get("created")),
            provider=self.name,
            provider_id=endpoint["id"],
        )


__all__ = ["StripeAdapter", "map_payment_intent_status", "map_refund_status"]
