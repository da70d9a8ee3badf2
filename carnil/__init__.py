"""Unified payment provider adapters for Stripe and Razorpay."""

__version__ = "1.0.0"
