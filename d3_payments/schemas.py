"""
D3 Payments Schemas

Pydantic schemas for the payment endpoints and notification payloads.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from d2_offers.models import Currency
from d2_offers.schemas import OfferRead

from .models import PaymentStatus


class PaymentRead(BaseModel):
    """Payment as returned by the API"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    offer_id: str
    buyer_id: str
    seller_id: str
    amount: Decimal
    currency: Currency
    status: PaymentStatus
    checkout_session_id: str
    stripe_payment_intent_id: Optional[str] = None
    refund_id: Optional[str] = None
    session_url: Optional[str] = None
    session_expires_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    refund_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RefundRequest(BaseModel):
    """Optional free-text reason; only stored locally"""

    reason: Optional[str] = Field(None, max_length=500)


class RefundResponse(BaseModel):
    refund_id: str
    refund_status: str
    payment: PaymentRead
    offer: Optional[OfferRead] = None


class PaymentStatusResponse(BaseModel):
    """Checkout session state as seen by the processor and by the local record"""

    session_id: str
    session_status: Optional[str] = None
    payment_status: Optional[str] = None
    amount_total: Optional[Decimal] = None
    currency: Optional[str] = None
    customer_email: Optional[str] = None
    payment: Optional[PaymentRead] = None


class PaymentListResponse(BaseModel):
    payments: List[PaymentRead]
    total: int
    page: int
    limit: int
    has_next_page: bool
    has_prev_page: bool


class WebhookResponse(BaseModel):
    received: bool = True
    handled: bool
    status: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    reason: Optional[str] = None
    reconciliation_required: bool = False


def payment_payload(payment) -> dict:
    """JSON-safe representation of a payment for notifications"""
    return PaymentRead.model_validate(payment).model_dump(mode="json")
