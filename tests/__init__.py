"""
Carnil Payments Test Suite

This package contains all tests for the payment adapters including:
- Unit tests for money, currency and model helpers
- Contract tests shared by every adapter
- Stripe and Razorpay adapter tests against mocked SDK clients
- HTTP service and configuration tests
"""
