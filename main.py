"""
Main FastAPI application entry point
"""
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from core.config import Settings, get_settings
from core.exceptions import MarketplaceError
from core.logging import get_logger
from core.metrics import get_metrics_response, metrics
from d0_gateway.base import CheckoutGateway
from d0_gateway.factory import init_checkout_gateway
from d2_offers.api import router as offers_router
from d2_offers.lifecycle import OfferLifecycleController
from d3_payments.api import router as payments_router
from d3_payments.queries import PaymentQueryService
from d3_payments.refunds import RefundService
from d3_payments.webhooks import WebhookProcessor
from d4_notifications.relay import NotificationRelay, build_relay

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    gateway: Optional[CheckoutGateway] = None,
    relay: Optional[NotificationRelay] = None,
) -> FastAPI:
    """
    Build the application and its process-wide services.

    The gateway, relay and session factory are created here once and
    handed to every controller; pass them in to substitute fakes.
    """
    settings = settings or get_settings()
    if session_factory is None:
        from database.session import SessionLocal

        session_factory = SessionLocal
    gateway = gateway or init_checkout_gateway(settings)
    relay = relay or build_relay(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.state.settings = settings
    app.state.offer_controller = OfferLifecycleController(session_factory, gateway, relay, settings=settings)
    app.state.webhook_processor = WebhookProcessor(session_factory, gateway, relay, settings=settings)
    app.state.refund_service = RefundService(session_factory, gateway, relay)
    app.state.payment_queries = PaymentQueryService(session_factory, gateway)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [settings.client_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request tracking middleware
    @app.middleware("http")
    async def track_requests(request: Request, call_next):
        """Track all HTTP requests for metrics"""
        start_time = time.time()

        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        response = await call_next(request)

        route = request.scope.get("route")
        metrics.track_request(
            method=request.method,
            endpoint=getattr(route, "path", request.url.path),
            status=response.status_code,
            duration=time.time() - start_time,
        )
        return response

    # Exception handlers
    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        """Handle domain errors"""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(f"Marketplace error - error_code: {exc.error_code}, details: {exc.details}, path: {request.url.path}")
        metrics.track_error(exc.error_code, "api")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        return JSONResponse(
            status_code=400,
            content={
                "error": "VALIDATION_ERROR",
                "message": first.get("msg", "Invalid request"),
                "details": {
                    "field": ".".join(str(part) for part in first.get("loc", ()) if part != "body"),
                    "errors": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors],
                },
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected errors"""
        logger.exception(f"Unexpected error - path: {request.url.path}", exc_info=exc)
        metrics.track_error(type(exc).__name__, "api")
        return JSONResponse(
            status_code=500,
            content={"error": "INTERNAL_ERROR", "message": "An unexpected error occurred"},
        )

    @app.get("/health", tags=["health"])
    async def health():
        return {
            "status": "ok",
            "version": settings.app_version,
            "environment": settings.environment,
            "gateway": gateway.provider,
        }

    @app.get("/metrics", include_in_schema=False)
    async def prometheus_metrics():
        """Expose metrics for Prometheus scraping"""
        if not settings.prometheus_enabled:
            return JSONResponse(status_code=404, content={"error": "Metrics not enabled"})

        metrics_data, content_type = get_metrics_response()
        return Response(content=metrics_data, media_type=content_type)

    app.include_router(offers_router)
    app.include_router(payments_router)

    logger.info(
        f"Starting {settings.app_name} version={settings.app_version} "
        f"environment={settings.environment} gateway={gateway.provider}"
    )
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=get_settings().is_development)
