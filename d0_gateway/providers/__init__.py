"""
Checkout gateway provider implementations
"""
from .stripe import StripeCheckoutGateway
from .stub import StubCheckoutGateway

__all__ = ["StripeCheckoutGateway", "StubCheckoutGateway"]
