"""
D2 Offers - custom offer lifecycle

Sellers send priced, time-bounded offers to buyers inside a conversation.
The transition graph in state_machine decides who may move an offer where;
OfferLifecycleController (d2_offers.lifecycle) applies those moves with
conditional writes and couples acceptance to a checkout session.
"""

from .models import Currency, DisputeReason, Offer, OfferStatus
from .state_machine import TRANSITIONS, Party, allowed_targets, is_legal

__all__ = [
    "Currency",
    "DisputeReason",
    "Offer",
    "OfferStatus",
    "TRANSITIONS",
    "Party",
    "allowed_targets",
    "is_legal",
]
