"""
Test shared adapter helpers, models and the error taxonomy.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError as ModelValidationError

from carnil.adapters.base import (
    compact,
    currency_exponent,
    from_minor_units,
    from_timestamp,
    payload_text,
    to_minor_units,
    to_timestamp,
)
from carnil.adapters.exceptions import (
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
from carnil.adapters.razorpay import RazorpayAdapter
from carnil.adapters.stripe import StripeAdapter
from carnil.models import (
    CreateInvoiceRequest,
    CreatePaymentIntentRequest,
    CreateRefundRequest,
    CreateSubscriptionRequest,
    Customer,
    ListRequest,
    PaymentIntentListRequest,
    UpdateCustomerRequest,
    UpdatePaymentIntentRequest,
)


class TestMinorUnits:
    """Test major/minor unit conversion."""

    def test_two_decimal_currency(self):
        assert to_minor_units(Decimal("20.00"), "usd") == 2000
        assert from_minor_units(2000, "usd") == Decimal("20.00")
        assert str(from_minor_units(2000, "USD")) == "20.00"

    def test_zero_decimal_currency(self):
        assert currency_exponent("jpy") == 0
        assert to_minor_units(Decimal("500"), "jpy") == 500
        assert str(from_minor_units(500, "jpy")) == "500"

    def test_three_decimal_currency(self):
        assert currency_exponent("KWD") == 3
        assert to_minor_units(Decimal("1.234"), "kwd") == 1234
        assert str(from_minor_units(1234, "kwd")) == "1.234"

    def test_excess_precision_rounds_half_up(self):
        assert to_minor_units(Decimal("10.005"), "usd") == 1001
        assert to_minor_units(Decimal("10.004"), "usd") == 1000
        assert to_minor_units(Decimal("0.5"), "jpy") == 1

    def test_accepts_string_and_int_amounts(self):
        assert to_minor_units("19.99", "eur") == 1999
        assert to_minor_units(5, "gbp") == 500

    def test_invalid_amount_raises_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            to_minor_units("ten dollars", "usd")
        assert exc_info.value.kind is ErrorKind.BAD_REQUEST

        with pytest.raises(ValidationError):
            to_minor_units(Decimal("Infinity"), "usd")

    @pytest.mark.parametrize(
        "currency",
        sorted(set(StripeAdapter.supported_currencies) | set(RazorpayAdapter.supported_currencies)),
    )
    def test_every_supported_currency_round_trips(self, currency):
        amount = Decimal(1).scaleb(-currency_exponent(currency)) * 12345
        assert from_minor_units(to_minor_units(amount, currency), currency) == amount

    def test_missing_value_is_zero(self):
        assert from_minor_units(None, "usd") == Decimal("0.00")


class TestTimeAndPayloadHelpers:

    def test_timestamps_are_utc(self):
        created = from_timestamp(1700000000)
        assert created.tzinfo is timezone.utc
        assert to_timestamp(created) == 1700000000

    def test_naive_datetime_treated_as_utc(self):
        assert to_timestamp(datetime(2023, 11, 14, 22, 13, 20)) == 1700000000

    def test_compact_drops_none(self):
        assert compact({"a": 1, "b": None, "c": ""}) == {"a": 1, "c": ""}

    def test_payload_text(self):
        assert payload_text(b'{"a": 1}') == '{"a": 1}'
        assert payload_text('{"a": 1}') == '{"a": 1}'
        assert payload_text(b"") is None
        assert payload_text("") is None
        assert payload_text(None) is None
        assert payload_text(b"\xff\xfe") is None
        assert payload_text('{"a": "\ud800"}') is None


class TestModels:
    """Test normalized entity and request models."""

    def test_metadata_defaults_to_empty_dict(self):
        customer = Customer(
            id="cus_1",
            metadata=None,
            created=from_timestamp(1700000000),
            updated=from_timestamp(1700000000),
            provider="stripe",
            provider_id="cus_1",
        )
        assert customer.metadata == {}
        assert customer.deleted is False

    def test_metadata_values_are_strings(self):
        request = CreatePaymentIntentRequest(
            amount=Decimal("1.00"), currency="usd", metadata={"count": 3, "empty": None}
        )
        assert request.metadata == {"count": "3", "empty": ""}

    def test_metadata_coerced_on_every_request(self):
        requests = [
            UpdateCustomerRequest(metadata={"n": 1}),
            UpdatePaymentIntentRequest(metadata={"n": 1}),
            CreateRefundRequest(payment_intent_id="pi_1", metadata={"n": 1}),
            CreateSubscriptionRequest(customer_id="cus_1", price_id="price_1", metadata={"n": 1}),
            CreateInvoiceRequest(customer_id="cus_1", metadata={"n": 1}),
        ]
        for request in requests:
            assert request.metadata == {"n": "1"}

        assert CreateRefundRequest(payment_intent_id="pi_1", metadata=None).metadata == {}

    def test_update_metadata_none_means_unchanged(self):
        assert UpdateCustomerRequest().metadata is None
        assert UpdatePaymentIntentRequest(metadata=None).metadata is None
        assert UpdateCustomerRequest(metadata={}).metadata == {}

    def test_currency_is_lowercased(self):
        request = CreatePaymentIntentRequest(amount=Decimal("20.00"), currency="USD")
        assert request.currency == "usd"

    def test_invalid_currency_rejected(self):
        with pytest.raises(ModelValidationError):
            CreatePaymentIntentRequest(amount=Decimal("20.00"), currency="dollars")

    def test_non_positive_amount_rejected(self):
        with pytest.raises(ModelValidationError):
            CreatePaymentIntentRequest(amount=Decimal("0"), currency="usd")
        with pytest.raises(ModelValidationError):
            CreatePaymentIntentRequest(amount=Decimal("-5"), currency="usd")

    def test_entities_are_immutable(self):
        customer = Customer(
            id="cus_1",
            created=from_timestamp(0),
            updated=from_timestamp(0),
            provider="stripe",
            provider_id="cus_1",
        )
        with pytest.raises(ModelValidationError):
            customer.email = "changed@example.com"

    def test_list_request_bounds(self):
        assert ListRequest().limit == 10
        assert ListRequest(limit=100).limit == 100
        with pytest.raises(ModelValidationError):
            ListRequest(limit=0)
        with pytest.raises(ModelValidationError):
            ListRequest(limit=101)

    def test_list_request_rejects_both_cursors(self):
        with pytest.raises(ModelValidationError):
            PaymentIntentListRequest(starting_after="pi_1", ending_before="pi_2")


class TestExceptions:
    """Test the exception hierarchy."""

    def test_exception_hierarchy(self):
        for exc_class in (
            NotFoundError,
            NotSupportedError,
            OperationNotImplementedError,
            ValidationError,
            ProviderError,
            WebhookError,
        ):
            assert issubclass(exc_class, PaymentError)

        assert issubclass(InsufficientFundsError, ProviderError)
        assert issubclass(RateLimitError, ProviderError)
        assert issubclass(AuthenticationError, ProviderError)

    @pytest.mark.parametrize("exc_class, kind", [
        (NotFoundError, ErrorKind.NOT_FOUND),
        (NotSupportedError, ErrorKind.NOT_SUPPORTED),
        (OperationNotImplementedError, ErrorKind.NOT_IMPLEMENTED),
        (ValidationError, ErrorKind.BAD_REQUEST),
        (ProviderError, ErrorKind.VENDOR_ERROR),
        (InsufficientFundsError, ErrorKind.VENDOR_ERROR),
        (RateLimitError, ErrorKind.VENDOR_ERROR),
        (AuthenticationError, ErrorKind.VENDOR_ERROR),
        (WebhookError, ErrorKind.PARSE_ERROR),
    ])
    def test_error_kinds(self, exc_class, kind):
        assert exc_class("boom").kind is kind

    def test_error_context(self):
        error = NotFoundError(
            "No such customer", provider="stripe", operation="get_customer", status_code=404
        )
        assert str(error) == "[stripe:get_customer] No such customer"
        assert error.message == "No such customer"
        assert error.to_dict() == {
            "kind": "NOT_FOUND",
            "message": "No such customer",
            "provider": "stripe",
            "operation": "get_customer",
            "code": None,
            "status_code": 404,
        }

    def test_error_without_context(self):
        assert str(PaymentError("plain")) == "plain"

    def test_batch_error_inherits_cause_kind(self):
        cause = ValidationError("bad email", provider="razorpay", operation="create_customer")
        error = BatchOperationError("item 2 failed", cause=cause, created=["a", "b"], index=2)
        assert error.kind is ErrorKind.BAD_REQUEST
        assert error.provider == "razorpay"
        assert error.created == ["a", "b"]
        assert error.index == 2
        assert error.cause is cause
