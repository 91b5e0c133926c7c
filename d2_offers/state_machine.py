"""
Offer transition graph

Every status change an offer may undergo is listed here together with who
is allowed to trigger it. Anything not listed is illegal.
"""
import enum
from typing import Dict, FrozenSet, Tuple

from core.exceptions import InvalidStateError, InvalidStatusError

from .models import OfferStatus


class Party(str, enum.Enum):
    """Who triggers a transition"""

    SELLER = "seller"
    BUYER = "buyer"
    SYSTEM = "system"


S = OfferStatus

TRANSITIONS: Dict[Tuple[OfferStatus, OfferStatus], FrozenSet[Party]] = {
    (S.DRAFT, S.SENT): frozenset({Party.SELLER}),
    (S.SENT, S.ACCEPTED): frozenset({Party.BUYER}),
    (S.SENT, S.REJECTED): frozenset({Party.BUYER}),
    (S.SENT, S.CANCELLED): frozenset({Party.SELLER}),
    (S.ACCEPTED, S.CANCELLED): frozenset({Party.SELLER, Party.SYSTEM}),
    (S.ACCEPTED, S.IN_PROGRESS): frozenset({Party.SYSTEM}),
    (S.IN_PROGRESS, S.DELIVERED): frozenset({Party.SELLER}),
    (S.IN_PROGRESS, S.CANCELLED): frozenset({Party.SYSTEM}),
    (S.DELIVERED, S.COMPLETED): frozenset({Party.BUYER}),
    (S.DELIVERED, S.DISPUTED): frozenset({Party.SELLER, Party.BUYER}),
    (S.DELIVERED, S.CANCELLED): frozenset({Party.SYSTEM}),
    (S.DISPUTED, S.CANCELLED): frozenset({Party.SYSTEM}),
    (S.COMPLETED, S.CANCELLED): frozenset({Party.SYSTEM}),
}

# Statuses a party may request through update_offer_status
USER_UPDATABLE_STATUSES = frozenset({S.DELIVERED, S.COMPLETED, S.DISPUTED})

# Offers in these statuses are cancelled when their payment is refunded
REFUND_CANCELLABLE_STATUSES = frozenset({S.ACCEPTED, S.IN_PROGRESS, S.DELIVERED, S.DISPUTED, S.COMPLETED})

# Statuses from which an offer still awaits or is doing work
ACTIVE_STATUSES = frozenset({S.SENT, S.ACCEPTED, S.IN_PROGRESS, S.DELIVERED, S.DISPUTED})


def is_legal(current: OfferStatus, target: OfferStatus, party: Party) -> bool:
    return party in TRANSITIONS.get((current, target), frozenset())


def allowed_targets(current: OfferStatus, party: Party) -> FrozenSet[OfferStatus]:
    return frozenset(target for (source, target), parties in TRANSITIONS.items() if source == current and party in parties)


def parse_user_status(value) -> OfferStatus:
    """
    Parse a status requested through update_offer_status.

    Raises:
        InvalidStatusError: If the value is outside the allow-list
    """
    allowed = [status.value for status in USER_UPDATABLE_STATUSES]
    try:
        status = OfferStatus(value.lower() if isinstance(value, str) else value)
    except ValueError:
        raise InvalidStatusError(value, allowed)
    if status not in USER_UPDATABLE_STATUSES:
        raise InvalidStatusError(value, allowed)
    return status


def require_transition(current: OfferStatus, target: OfferStatus, party: Party) -> None:
    """
    Raises:
        InvalidStateError: If `party` may not move an offer from current to target
    """
    if not is_legal(current, target, party):
        raise InvalidStateError(
            f"Cannot move offer from {current.value} to {target.value}",
            current_status=current,
            requested_status=target.value,
        )
