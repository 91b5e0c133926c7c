"""
Typed offer lookup

find_offer is the single place an offer id is resolved. Demo ids are only
recognised when the enable_demo_offers setting is on.
"""
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy.orm import Session

from core.config import get_settings
from database.base import utcnow

from .models import Currency, Offer, OfferStatus

DEMO_OFFER_PREFIX = "demo-offer-"


@dataclass
class Found:
    offer: Offer


@dataclass
class NotFound:
    offer_id: str


@dataclass
class Demo:
    offer: Offer


OfferLookup = Union[Found, NotFound, Demo]


def build_demo_offer(offer_id: str, actor_id: str) -> Offer:
    """Synthetic offer used by the web client's demo mode; never persisted"""
    now = utcnow()
    offer = Offer(
        id=offer_id,
        conversation_id=f"demo-conversation-{offer_id[len(DEMO_OFFER_PREFIX):]}",
        seller_id="demo-seller",
        buyer_id=actor_id,
        title="Demo offer",
        description="Example offer shown in demo mode",
        price=Decimal("100.00"),
        currency=Currency.USD,
        delivery_time_days=7,
        revisions=1,
        requirements=[],
        inclusions=[],
        status=OfferStatus.SENT,
        expires_at=now + timedelta(days=7),
        sent_at=now,
        created_at=now,
        updated_at=now,
    )
    offer.is_demo = True
    return offer


def find_offer(session: Session, offer_id: str, actor_id: str, demo_enabled: Optional[bool] = None) -> OfferLookup:
    if demo_enabled is None:
        demo_enabled = get_settings().enable_demo_offers

    if offer_id.startswith(DEMO_OFFER_PREFIX) and demo_enabled:
        return Demo(build_demo_offer(offer_id, actor_id))

    offer = session.get(Offer, offer_id)
    if offer is None:
        return NotFound(offer_id)
    return Found(offer)
