"""
D0 Gateway - payment processor integration layer

Wraps the processor's hosted checkout, refund and webhook signature APIs
behind a single CheckoutGateway interface.
"""
from .base import (
    SUPPORTED_CURRENCIES,
    CheckoutGateway,
    CheckoutSessionResult,
    RefundResult,
    SessionSnapshot,
    from_minor_units,
    to_minor_units,
)
from .factory import get_checkout_gateway, init_checkout_gateway, set_checkout_gateway

__all__ = [
    "SUPPORTED_CURRENCIES",
    "CheckoutGateway",
    "CheckoutSessionResult",
    "RefundResult",
    "SessionSnapshot",
    "from_minor_units",
    "to_minor_units",
    "get_checkout_gateway",
    "init_checkout_gateway",
    "set_checkout_gateway",
]
