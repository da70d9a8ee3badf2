#!/usr/bin/env python3
"""
Validate that the configured payment provider is reachable.

Builds the adapter named by PAYMENT_PROVIDER from the environment (or .env)
and runs its health check against the vendor API.
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from carnil.adapters import PaymentError, PaymentProvider  # noqa: E402
from carnil.config import get_settings  # noqa: E402
from carnil.main import build_provider, configure_logging  # noqa: E402


def check_configuration():
    """Build the provider from settings."""
    print("Checking configuration...")

    settings = get_settings()
    try:
        provider = build_provider(settings)
    except (ValueError, PaymentError) as e:
        print(f"❌ Could not build {settings.PAYMENT_PROVIDER} provider: {e}")
        return None

    assert isinstance(provider, PaymentProvider)
    print(f"✅ Provider: {provider.name} (livemode={provider.livemode})")
    print(f"✅ Timeout: {provider.config.timeout_ms}ms, retries: {provider.config.max_retries}")

    if provider.config.webhook_secret:
        print("✅ Webhook secret configured")
    else:
        print("⚠️  No webhook secret configured; POST /webhooks will answer 503")

    return provider


async def check_health(provider):
    """Issue the provider's health probe."""
    print(f"\n🔗 Checking {provider.name} API...")

    if await provider.health_check():
        print(f"✅ {provider.name} API reachable")
        return True

    print(f"❌ {provider.name} health check failed (see log output above)")
    return False


def main():
    """Run all validation checks."""
    print("🚀 Validating Payment Provider Connection\n")
    configure_logging(get_settings().LOG_LEVEL)

    provider = check_configuration()
    if provider is None:
        return False

    healthy = asyncio.run(check_health(provider))

    print(f"\n📊 Validation Results: {'passed' if healthy else 'failed'}")
    if healthy:
        print("\n🎉 Provider connection validated successfully!")
        print(f"   Supported features: {', '.join(provider.supported_features)}")
    else:
        print("\n⚠️  Please check credentials and network access.")

    return healthy


if __name__ == "__main__":
    success = main()
    exit(0 if success else 1)
