"""
D3 Payments API

Webhook receiver, refunds and payment lookups. The webhook endpoint reads
the raw request body because the signature covers the exact bytes sent.
"""
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from core.auth import Actor, get_current_actor
from d0_gateway.base import from_minor_units
from d2_offers.schemas import OfferRead

from .queries import PaymentQueryService
from .refunds import RefundService
from .schemas import (
    PaymentListResponse,
    PaymentRead,
    PaymentStatusResponse,
    RefundRequest,
    RefundResponse,
    WebhookResponse,
)
from .webhooks import WebhookProcessor, WebhookStatus

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])

SIGNATURE_HEADER = "stripe-signature"


def get_webhook_processor(request: Request) -> WebhookProcessor:
    return request.app.state.webhook_processor


def get_refund_service(request: Request) -> RefundService:
    return request.app.state.refund_service


def get_payment_queries(request: Request) -> PaymentQueryService:
    return request.app.state.payment_queries


@router.post("/webhook", response_model=WebhookResponse)
async def handle_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Receive a processor webhook.

    Returns 401 for a bad signature. A handler failure answers 200 or 500
    depending on the webhook_failure_mode setting; 500 makes the processor
    redeliver the event.
    """
    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    result = await run_in_threadpool(processor.process_webhook, payload, signature)
    response = WebhookResponse(**{k: v for k, v in result.items() if k in WebhookResponse.model_fields})

    if result["status"] == WebhookStatus.FAILED.value and processor.failure_mode == "retry":
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=response.model_dump())
    return response


@router.post("/{payment_id}/refund", response_model=RefundResponse)
def refund_payment(
    payment_id: str,
    body: Optional[RefundRequest] = Body(None),
    actor: Actor = Depends(get_current_actor),
    service: RefundService = Depends(get_refund_service),
):
    """Refund a succeeded payment in full and cancel its offer"""
    outcome = service.refund_payment(payment_id, actor, reason=body.reason if body else None)
    return RefundResponse(
        refund_id=outcome.refund_id,
        refund_status=outcome.refund_status,
        payment=PaymentRead.model_validate(outcome.payment),
        offer=OfferRead.model_validate(outcome.offer) if outcome.offer is not None else None,
    )


@router.get("/status/{session_id}", response_model=PaymentStatusResponse)
def get_payment_status(
    session_id: str,
    actor: Actor = Depends(get_current_actor),
    queries: PaymentQueryService = Depends(get_payment_queries),
):
    view = queries.get_payment_status(session_id, actor)
    snapshot = view.snapshot
    return PaymentStatusResponse(
        session_id=snapshot.session_id,
        session_status=snapshot.status,
        payment_status=snapshot.payment_status,
        amount_total=from_minor_units(snapshot.amount_total) if snapshot.amount_total is not None else None,
        currency=snapshot.currency,
        customer_email=snapshot.customer_email,
        payment=PaymentRead.model_validate(view.payment) if view.payment is not None else None,
    )


@router.get("/offer/{offer_id}", response_model=PaymentRead)
def get_payment_for_offer(
    offer_id: str,
    actor: Actor = Depends(get_current_actor),
    queries: PaymentQueryService = Depends(get_payment_queries),
):
    return queries.get_payment_for_offer(offer_id, actor)


@router.get("", response_model=PaymentListResponse)
def list_payments(
    role: str = Query("all"),
    payment_status: Optional[str] = Query(None, alias="status"),
    page: int = Query(1),
    limit: int = Query(10),
    actor: Actor = Depends(get_current_actor),
    queries: PaymentQueryService = Depends(get_payment_queries),
):
    result = queries.list_payments_for_user(actor, role=role, status=payment_status, page=page, limit=limit)
    return PaymentListResponse(
        payments=[PaymentRead.model_validate(p) for p in result.payments],
        total=result.total,
        page=result.page,
        limit=result.limit,
        has_next_page=result.has_next_page,
        has_prev_page=result.has_prev_page,
    )
