"""
Contract tests to verify all payment adapters implement the PaymentProvider interface correctly.
These tests ensure any new payment provider adapter follows the established contract.
"""

import inspect
from datetime import datetime, timezone
from decimal import Decimal

import pytest
import stripe

from carnil.adapters import PaymentProvider
from carnil.adapters.base import MAX_BATCH_SIZE
from carnil.adapters.exceptions import (
    BatchOperationError,
    ErrorKind,
    NotSupportedError,
    OperationNotImplementedError,
    ValidationError,
)
from carnil.adapters.razorpay import RazorpayAdapter
from carnil.adapters.stripe import StripeAdapter
from carnil.models import (
    AIUsageMetrics,
    CreateCustomerRequest,
    CreateInvoiceRequest,
    CreatePaymentIntentRequest,
    CreateRefundRequest,
    CreateSubscriptionRequest,
    UsageMetrics,
)

ADAPTER_CLASSES = [StripeAdapter, RazorpayAdapter]

CONTRACT_METHODS = sorted(
    name
    for name, member in inspect.getmembers(PaymentProvider, inspect.iscoroutinefunction)
    if not name.startswith("_")
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)

# Operations that neither adapter implements, with sample arguments.
UNIMPLEMENTED_CALLS = [
    ("create_subscription", (CreateSubscriptionRequest(customer_id="cus_1", price_id="price_1"),)),
    ("get_subscription", ("sub_1",)),
    ("update_subscription", ("sub_1", CreateSubscriptionRequest(customer_id="cus_1", price_id="price_1"))),
    ("cancel_subscription", ("sub_1",)),
    ("list_subscriptions", ()),
    ("create_invoice", (CreateInvoiceRequest(customer_id="cus_1"),)),
    ("get_invoice", ("in_1",)),
    ("update_invoice", ("in_1", CreateInvoiceRequest(customer_id="cus_1"))),
    ("finalize_invoice", ("in_1",)),
    ("pay_invoice", ("in_1",)),
    ("list_invoices", ()),
    ("get_dispute", ("dp_1",)),
    ("list_disputes", ()),
    ("update_dispute", ("dp_1", {"uncategorized_text": "Delivered"})),
    ("track_usage", (UsageMetrics(
        customer_id="cus_1", feature_id="api_calls", usage=10, period="2024-01", timestamp=NOW
    ),)),
    ("track_ai_usage", (AIUsageMetrics(
        customer_id="cus_1", model_id="gpt", tokens=100, requests=1,
        cost=Decimal("0.02"), period="2024-01", timestamp=NOW,
    ),)),
    ("get_usage_metrics", ("cus_1", "api_calls", "2024-01")),
    ("get_ai_usage_metrics", ("cus_1",)),
]


@pytest.fixture(params=ADAPTER_CLASSES, ids=lambda cls: cls.name)
def adapter(request):
    """Each adapter wired to a mocked SDK client."""
    if request.param is StripeAdapter:
        return request.getfixturevalue("stripe_adapter")
    return request.getfixturevalue("razorpay_adapter")


class TestPaymentProviderContract:
    """Test that all adapters conform to the PaymentProvider contract."""

    @pytest.mark.parametrize("adapter_class", ADAPTER_CLASSES)
    def test_adapter_inherits_from_base(self, adapter_class):
        assert issubclass(adapter_class, PaymentProvider)

    @pytest.mark.parametrize("adapter_class", ADAPTER_CLASSES)
    def test_adapter_is_concrete(self, adapter_class):
        assert not inspect.isabstract(adapter_class)

    @pytest.mark.parametrize("adapter_class", ADAPTER_CLASSES)
    @pytest.mark.parametrize("method_name", CONTRACT_METHODS)
    def test_adapter_method_signatures(self, adapter_class, method_name):
        """Verify adapter methods accept the same parameters as the contract."""
        method = getattr(adapter_class, method_name)
        assert inspect.iscoroutinefunction(method), f"{adapter_class.__name__}.{method_name} is not async"

        base_params = list(inspect.signature(getattr(PaymentProvider, method_name)).parameters)
        adapter_params = list(inspect.signature(method).parameters)
        assert adapter_params == base_params

    @pytest.mark.parametrize("adapter_class", ADAPTER_CLASSES)
    def test_adapter_metadata(self, adapter_class):
        assert adapter_class.name in ("stripe", "razorpay")
        assert adapter_class.version
        assert adapter_class.signature_header
        assert all(c == c.lower() and len(c) == 3 for c in adapter_class.supported_currencies)
        assert all(c == c.upper() and len(c) == 2 for c in adapter_class.supported_countries)

    def test_capabilities(self, adapter):
        assert adapter.supports_feature("payments")
        assert adapter.supports_feature("webhooks")
        assert not adapter.supports_feature("subscriptions")
        assert adapter.supports_currency("USD")
        assert adapter.supports_currency("inr")
        assert not adapter.supports_currency("btc")
        assert adapter.supports_country("in")
        assert not adapter.supports_country("ZZ")

    def test_test_keys_are_not_live(self, adapter):
        assert adapter.livemode is False


class TestUnimplementedOperations:
    """Operations without an implementation fail the same way every time."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method_name, args", UNIMPLEMENTED_CALLS, ids=[c[0] for c in UNIMPLEMENTED_CALLS])
    async def test_raises_not_implemented(self, adapter, method_name, args):
        for _ in range(3):
            with pytest.raises(OperationNotImplementedError) as exc_info:
                await getattr(adapter, method_name)(*args)
            assert exc_info.value.kind is ErrorKind.NOT_IMPLEMENTED
            assert exc_info.value.provider == adapter.name
            assert exc_info.value.operation == method_name

    @pytest.mark.asyncio
    async def test_razorpay_refunds_not_implemented(self, razorpay_adapter):
        with pytest.raises(OperationNotImplementedError):
            await razorpay_adapter.create_refund(CreateRefundRequest(payment_intent_id="order_1"))
        with pytest.raises(OperationNotImplementedError):
            await razorpay_adapter.get_refund("rfnd_1")
        with pytest.raises(OperationNotImplementedError):
            await razorpay_adapter.list_refunds()

    @pytest.mark.asyncio
    async def test_razorpay_webhook_endpoints_not_supported(self, razorpay_adapter, mock_razorpay_client):
        calls = [
            razorpay_adapter.create_webhook_endpoint("https://example.com/hook", ["order.paid"]),
            razorpay_adapter.update_webhook_endpoint("wh_1", "https://example.com/hook", ["order.paid"]),
            razorpay_adapter.delete_webhook_endpoint("wh_1"),
            razorpay_adapter.list_webhook_endpoints(),
        ]
        for call in calls:
            with pytest.raises(NotSupportedError) as exc_info:
                await call
            assert exc_info.value.kind is ErrorKind.NOT_SUPPORTED
        assert mock_razorpay_client.mock_calls == []


class TestBatchOperations:
    """Test batch creation shared by every adapter."""

    @pytest.mark.asyncio
    async def test_batch_preserves_order(self, stripe_adapter, mock_stripe_client, stripe_customer):
        mock_stripe_client.customers.create.side_effect = [
            {**stripe_customer, "id": "cus_a", "email": "a@example.com"},
            {**stripe_customer, "id": "cus_b", "email": "b@example.com"},
        ]

        customers = await stripe_adapter.batch_create_customers([
            CreateCustomerRequest(email="a@example.com"),
            CreateCustomerRequest(email="b@example.com"),
        ])

        assert [c.id for c in customers] == ["cus_a", "cus_b"]
        assert mock_stripe_client.customers.create.call_count == 2

    @pytest.mark.asyncio
    async def test_empty_batch(self, adapter):
        assert await adapter.batch_create_customers([]) == []

    @pytest.mark.asyncio
    async def test_batch_size_limit(self, adapter):
        requests = [CreateCustomerRequest(email=f"{i}@example.com") for i in range(MAX_BATCH_SIZE + 1)]

        with pytest.raises(ValidationError) as exc_info:
            await adapter.batch_create_customers(requests)

        assert exc_info.value.kind is ErrorKind.BAD_REQUEST
        assert exc_info.value.operation == "batch_create_customers"

    @pytest.mark.asyncio
    async def test_batch_failure_reports_created_items(
        self, stripe_adapter, mock_stripe_client, stripe_customer
    ):
        mock_stripe_client.customers.create.side_effect = [
            stripe_customer,
            stripe.InvalidRequestError("Invalid email address: nope", "email"),
            stripe_customer,
        ]

        with pytest.raises(BatchOperationError) as exc_info:
            await stripe_adapter.batch_create_customers([
                CreateCustomerRequest(email="test@example.com"),
                CreateCustomerRequest(email="nope"),
                CreateCustomerRequest(email="later@example.com"),
            ])

        error = exc_info.value
        assert error.index == 1
        assert [c.id for c in error.created] == ["cus_test123"]
        assert error.kind is ErrorKind.BAD_REQUEST
        assert error.provider == "stripe"
        assert isinstance(error.cause, ValidationError)
        # The batch stops at the first failure.
        assert mock_stripe_client.customers.create.call_count == 2

    @pytest.mark.asyncio
    async def test_batch_payment_intents_not_supported_item(self, razorpay_adapter):
        with pytest.raises(BatchOperationError) as exc_info:
            await razorpay_adapter.batch_create_payment_intents([
                CreatePaymentIntentRequest(amount=Decimal("10.00"), currency="inr", capture_method="manual"),
            ])

        assert exc_info.value.kind is ErrorKind.NOT_SUPPORTED
        assert exc_info.value.created == []
