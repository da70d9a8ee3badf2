import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .adapters import PaymentProvider, WebhookError
from .config import Settings, get_settings

logger = logging.getLogger("carnil")

PAYMENT_SUCCEEDED_EVENTS = {"payment_intent.succeeded", "order.paid", "payment.captured"}
PAYMENT_FAILED_EVENTS = {"payment_intent.payment_failed", "payment.failed"}
DISPUTE_EVENTS = {"charge.dispute.created", "payment.dispute.created"}


class EndpointFilter(logging.Filter):
    """Filter out noisy health check access logs."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging filter
        return "GET /health" not in record.getMessage()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper())
    logging.getLogger("uvicorn.access").addFilter(EndpointFilter())


def build_provider(settings: Settings) -> PaymentProvider:
    """Construct the adapter named by ``PAYMENT_PROVIDER``."""
    if settings.PAYMENT_PROVIDER == "razorpay":
        from .adapters.razorpay import RazorpayAdapter

        return RazorpayAdapter(settings.razorpay_config())

    from .adapters.stripe import StripeAdapter

    return StripeAdapter(settings.stripe_config())


def create_app(provider: PaymentProvider, webhook_secret: Optional[str] = None) -> FastAPI:
    """HTTP surface around a single, explicitly supplied provider."""
    secret = webhook_secret or provider.config.webhook_secret

    app = FastAPI(title="Carnil Payments", version=__version__)
    app.state.provider = provider

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        if not await provider.health_check():
            raise HTTPException(
                status_code=503,
                detail={"status": "unhealthy", "provider": provider.name},
            )
        return {"status": "healthy", "provider": provider.name, "livemode": provider.livemode}

    @app.post("/webhooks")
    async def receive_webhook(request: Request):
        """Verify a provider webhook and acknowledge it."""
        if not secret:
            raise HTTPException(status_code=503, detail="Webhook secret is not configured")

        payload = await request.body()
        sig = request.headers.get(provider.signature_header)
        if not sig:
            raise HTTPException(status_code=400, detail=f"Missing {provider.signature_header}")

        try:
            event = await provider.parse_webhook(payload, sig, secret)
        except WebhookError as exc:
            logger.error(f"Webhook verification failed: {exc}")
            raise HTTPException(status_code=400, detail=exc.to_dict())

        if event.type in PAYMENT_SUCCEEDED_EVENTS:
            logger.info(f"{provider.name} payment succeeded ({event.id})")
        elif event.type in PAYMENT_FAILED_EVENTS:
            logger.warning(f"{provider.name} payment failed ({event.id})")
        elif event.type in DISPUTE_EVENTS:
            logger.warning(f"{provider.name} dispute created ({event.id})")
        else:
            logger.info(f"Unhandled {provider.name} webhook type: {event.type}")

        return {"received": True, "event_id": event.id, "event_type": event.type}

    @app.get("/")
    async def root():
        return {
            "message": "Carnil Payments API",
            "provider": provider.name,
            "features": list(provider.supported_features),
        }

    return app


def main() -> None:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    app = create_app(build_provider(settings))
    uvicorn.run(app, host="0.0.0.0", port=settings.HTTP_PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
