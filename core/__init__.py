"""Core utilities and configuration for the offer and payment engine"""
from core.config import settings
from core.exceptions import MarketplaceError, ValidationError
from core.logging import get_logger

__all__ = [
    "settings",
    "get_logger",
    "MarketplaceError",
    "ValidationError",
]
