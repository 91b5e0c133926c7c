"""
D3 Payments - checkout settlement, refunds and reconciliation

Payments are created pending when an offer is accepted and settle only
through verified processor webhooks or an explicit refund.
"""

from .models import ACTIVE_PAYMENT_STATUSES, Payment, PaymentStatus, ProcessedWebhookEvent

__all__ = [
    "ACTIVE_PAYMENT_STATUSES",
    "Payment",
    "PaymentStatus",
    "ProcessedWebhookEvent",
]
