"""
D2 Offers Schemas

Pydantic request/response schemas for the offer endpoints. Request models
accept both snake_case and the camelCase names used by the web client.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import Currency, DisputeReason, OfferStatus

# Largest value the Numeric(10, 2) price column holds
MAX_PRICE = Decimal("99999999.99")


class OfferCreateRequest(BaseModel):
    """Terms of a new offer, sent by the seller"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "buyerId": "user_b",
                "title": "Logo redesign",
                "description": "Three concepts and a final vector logo",
                "price": "250.00",
                "currency": "usd",
                "deliveryTimeDays": 5,
                "revisions": 2,
                "requirements": ["Brand colours"],
                "inclusions": ["SVG", "PNG"],
            }
        },
    )

    buyer_id: str = Field(..., min_length=1, max_length=64)
    conversation_id: Optional[str] = Field(None, max_length=36)
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    currency: Currency = Currency.USD
    delivery_time_days: int = Field(..., ge=1, le=365)
    revisions: int = Field(default=1, ge=0)
    requirements: List[str] = Field(default_factory=list)
    inclusions: List[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None

    @field_validator("price")
    @classmethod
    def validate_price(cls, v):
        """Price has at most 2 decimal places"""
        if v.as_tuple().exponent < -2:
            raise ValueError("Price cannot have more than 2 decimal places")
        return v

    @field_validator("currency", mode="before")
    @classmethod
    def normalise_currency(cls, v):
        if isinstance(v, str):
            return v.lower()
        return v


class StatusUpdateRequest(BaseModel):
    """Work-progress status change requested by a party"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # Kept as a plain string so unknown values reach the allow-list check
    status: str
    message: Optional[str] = Field(None, max_length=2000)
    reason: Optional[DisputeReason] = None
    description: Optional[str] = Field(None, max_length=2000)


class OfferRead(BaseModel):
    """Offer as returned by the API"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    seller_id: str
    buyer_id: str
    title: str
    description: str
    price: Decimal
    currency: Currency
    delivery_time_days: int
    revisions: int
    requirements: List[str]
    inclusions: List[str]
    status: OfferStatus
    expires_at: datetime
    payment_session_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    disputed_at: Optional[datetime] = None
    delivery_message: Optional[str] = None
    dispute_reason: Optional[DisputeReason] = None
    dispute_description: Optional[str] = None
    disputed_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_demo: bool = False


class CheckoutSessionRead(BaseModel):
    session_id: str
    url: str
    expires_at: datetime


class AcceptOfferResponse(BaseModel):
    """Accepted offer plus the hosted checkout page the buyer should visit"""

    offer: OfferRead
    payment_id: str
    checkout: CheckoutSessionRead


class OfferListResponse(BaseModel):
    offers: List[OfferRead]
    total: int


def offer_payload(offer) -> dict:
    """JSON-safe representation of an offer for notifications"""
    return OfferRead.model_validate(offer).model_dump(mode="json")
