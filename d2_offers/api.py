"""
D2 Offers API

REST endpoints for sending, accepting, rejecting, cancelling and
progressing offers. All business rules live in OfferLifecycleController;
these handlers only translate HTTP to controller calls.
"""
from fastapi import APIRouter, Depends, Query, Request, status

from core.auth import Actor, get_current_actor

from .lifecycle import AcceptedOffer, OfferLifecycleController
from .schemas import (
    AcceptOfferResponse,
    CheckoutSessionRead,
    OfferCreateRequest,
    OfferListResponse,
    OfferRead,
    StatusUpdateRequest,
)

router = APIRouter(prefix="/api/v1/offers", tags=["offers"])


def get_offer_controller(request: Request) -> OfferLifecycleController:
    """Controller installed on the app at startup"""
    return request.app.state.offer_controller


def _accept_response(result: AcceptedOffer) -> AcceptOfferResponse:
    return AcceptOfferResponse(
        offer=OfferRead.model_validate(result.offer),
        payment_id=result.payment.id,
        checkout=CheckoutSessionRead(
            session_id=result.session.session_id,
            url=result.session.url,
            expires_at=result.session.expires_at,
        ),
    )


@router.post("", response_model=OfferRead, status_code=status.HTTP_201_CREATED)
def create_offer(
    body: OfferCreateRequest,
    actor: Actor = Depends(get_current_actor),
    controller: OfferLifecycleController = Depends(get_offer_controller),
):
    """Send a new offer to a buyer"""
    return controller.create_offer(actor.user_id, body)


@router.get("", response_model=OfferListResponse)
def list_my_offers(
    role: str = Query("all"),
    active_only: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    controller: OfferLifecycleController = Depends(get_offer_controller),
):
    offers = controller.list_offers_for_user(actor, role=role, active_only=active_only)
    return OfferListResponse(offers=[OfferRead.model_validate(o) for o in offers], total=len(offers))


@router.get("/conversation/{conversation_id}", response_model=OfferListResponse)
def list_conversation_offers(
    conversation_id: str,
    actor: Actor = Depends(get_current_actor),
    controller: OfferLifecycleController = Depends(get_offer_controller),
):
    offers = controller.list_offers_for_conversation(conversation_id, actor)
    return OfferListResponse(offers=[OfferRead.model_validate(o) for o in offers], total=len(offers))


@router.get("/{offer_id}", response_model=OfferRead)
def get_offer(
    offer_id: str,
    actor: Actor = Depends(get_current_actor),
    controller: OfferLifecycleController = Depends(get_offer_controller),
):
    return controller.get_offer(offer_id, actor)


@router.patch("/{offer_id}/accept", response_model=AcceptOfferResponse)
def accept_offer(
    offer_id: str,
    actor: Actor = Depends(get_current_actor),
    controller: OfferLifecycleController = Depends(get_offer_controller),
):
    """Accept an offer and open a hosted checkout session for it"""
    return _accept_response(controller.accept_offer(offer_id, actor))


@router.patch("/{offer_id}/reject", response_model=OfferRead)
def reject_offer(
    offer_id: str,
    actor: Actor = Depends(get_current_actor),
    controller: OfferLifecycleController = Depends(get_offer_controller),
):
    return controller.reject_offer(offer_id, actor)


@router.patch("/{offer_id}/cancel", response_model=OfferRead)
def cancel_offer(
    offer_id: str,
    actor: Actor = Depends(get_current_actor),
    controller: OfferLifecycleController = Depends(get_offer_controller),
):
    return controller.cancel_offer(offer_id, actor)


@router.patch("/{offer_id}/status", response_model=OfferRead)
def update_offer_status(
    offer_id: str,
    body: StatusUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    controller: OfferLifecycleController = Depends(get_offer_controller),
):
    """Mark an offer delivered, completed or disputed"""
    return controller.update_offer_status(
        offer_id,
        body.status,
        actor,
        message=body.message,
        reason=body.reason,
        description=body.description,
    )


@router.post("/{offer_id}/checkout", response_model=AcceptOfferResponse)
def retry_checkout(
    offer_id: str,
    actor: Actor = Depends(get_current_actor),
    controller: OfferLifecycleController = Depends(get_offer_controller),
):
    """Open a new checkout session for an accepted offer whose last one lapsed"""
    return _accept_response(controller.retry_checkout(offer_id, actor))
