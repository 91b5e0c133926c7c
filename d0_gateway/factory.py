"""
Factory for the process-wide checkout gateway
"""
import threading
from typing import Optional

from core.config import Settings, get_settings
from core.exceptions import ConfigurationError
from core.logging import get_logger

from .base import CheckoutGateway
from .providers.stripe import StripeCheckoutGateway
from .providers.stub import StubCheckoutGateway

logger = get_logger("gateway.factory", domain="d0")

_gateway: Optional[CheckoutGateway] = None
_lock = threading.Lock()


def build_checkout_gateway(settings: Settings) -> CheckoutGateway:
    """Build the gateway selected by settings"""
    if settings.use_stubs:
        return StubCheckoutGateway(
            webhook_secret=settings.webhook_secret,
            webhook_tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        )

    if not settings.stripe_secret_key:
        raise ConfigurationError("Stripe secret key is not configured", setting="stripe_secret_key")

    return StripeCheckoutGateway(
        api_key=settings.stripe_secret_key.get_secret_value(),
        webhook_secret=settings.webhook_secret,
        webhook_tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
    )


def init_checkout_gateway(settings: Optional[Settings] = None) -> CheckoutGateway:
    """Create the gateway at startup and install it as the process-wide instance"""
    global _gateway
    settings = settings or get_settings()
    gateway = build_checkout_gateway(settings)
    with _lock:
        _gateway = gateway
    logger.info(f"Checkout gateway initialized: {gateway.provider}")
    return gateway


def set_checkout_gateway(gateway: Optional[CheckoutGateway]) -> None:
    """Install a specific gateway, or clear it with None"""
    global _gateway
    with _lock:
        _gateway = gateway


def get_checkout_gateway() -> CheckoutGateway:
    """
    Return the process-wide gateway.

    Raises:
        ConfigurationError: If init_checkout_gateway has not run
    """
    if _gateway is None:
        raise ConfigurationError("Checkout gateway has not been initialized")
    return _gateway
