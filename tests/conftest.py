"""
Pytest configuration and fixtures for the provider adapter tests.
"""

import hashlib
import hmac
import os
import sys
import time
from unittest.mock import MagicMock

import pytest

# Add project root to Python path for imports
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.append(ROOT_DIR)

from carnil.adapters.razorpay import RazorpayAdapter  # noqa: E402
from carnil.adapters.stripe import StripeAdapter  # noqa: E402
from carnil.config import ProviderConfig  # noqa: E402

STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
RAZORPAY_WEBHOOK_SECRET = "rzp_webhook_secret"


def stripe_signature(payload: str, secret: str = STRIPE_WEBHOOK_SECRET, timestamp=None) -> str:
    """Build a Stripe-Signature header the way Stripe signs deliveries."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def razorpay_signature(payload: str, secret: str = RAZORPAY_WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


@pytest.fixture
def stripe_config():
    return ProviderConfig(api_key="sk_test_fake", webhook_secret=STRIPE_WEBHOOK_SECRET)


@pytest.fixture
def razorpay_config():
    return ProviderConfig(
        api_key="rzp_test_fake",
        api_secret="rzp_secret_fake",
        webhook_secret=RAZORPAY_WEBHOOK_SECRET,
    )


@pytest.fixture
def mock_stripe_client():
    """Stand-in for ``stripe.StripeClient``; services return plain dicts."""
    return MagicMock()


@pytest.fixture
def mock_razorpay_client():
    """Stand-in for ``razorpay.Client``."""
    return MagicMock()


@pytest.fixture
def stripe_adapter(stripe_config, mock_stripe_client):
    return StripeAdapter(stripe_config, client=mock_stripe_client)


@pytest.fixture
def razorpay_adapter(razorpay_config, mock_razorpay_client):
    return RazorpayAdapter(razorpay_config, client=mock_razorpay_client)


@pytest.fixture
def stripe_customer():
    return {
        "id": "cus_test123",
        "object": "customer",
        "email": "test@example.com",
        "name": "Test Customer",
        "phone": None,
        "description": "Integration test customer",
        "metadata": {"tier": "gold"},
        "created": 1700000000,
        "invoice_settings": {"default_payment_method": None},
    }


@pytest.fixture
def stripe_payment_intent():
    return {
        "id": "pi_test123",
        "object": "payment_intent",
        "amount": 2000,
        "currency": "usd",
        "status": "requires_payment_method",
        "client_secret": "pi_test123_secret_abc",
        "customer": "cus_test123",
        "description": "Order #1001",
        "metadata": {"order_id": "1001"},
        "payment_method": None,
        "receipt_email": None,
        "last_payment_error": None,
        "created": 1700000000,
    }


@pytest.fixture
def razorpay_customer():
    return {
        "id": "cust_test123",
        "entity": "customer",
        "name": "Test Customer",
        "email": "test@example.com",
        "contact": "+919999999999",
        "notes": {"tier": "gold", "carnil_description": "Integration test customer"},
        "created_at": 1700000000,
    }


@pytest.fixture
def razorpay_order():
    return {
        "id": "order_test123",
        "entity": "order",
        "amount": 50000,
        "amount_paid": 0,
        "amount_due": 50000,
        "currency": "INR",
        "receipt": "rcpt_abc",
        "status": "created",
        "attempts": 0,
        "notes": {
            "order_ref": "1001",
            "carnil_customer_id": "cust_test123",
            "carnil_description": "Order #1001",
        },
        "created_at": 1700000000,
    }
