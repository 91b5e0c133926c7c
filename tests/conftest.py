"""
Shared fixtures for the offer and payment engine tests

Every test gets its own SQLite file, an in-memory checkout gateway and a
recording notification relay, wired together the way create_app wires the
real ones.
"""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update

from core.auth import Actor, Role
from core.config import Settings
from d0_gateway.providers.stub import StubCheckoutGateway
from d2_offers.lifecycle import OfferLifecycleController
from d2_offers.models import Offer
from d3_payments.queries import PaymentQueryService
from d3_payments.reconciliation import Reconciler
from d3_payments.refunds import RefundService
from d3_payments.webhooks import WebhookProcessor
from d4_notifications.relay import InMemoryNotificationRelay
from database.base import utcnow
from database.session import build_engine, build_session_factory, create_tables

SELLER_ID = "seller-1"
BUYER_ID = "buyer-1"


@pytest.fixture
def test_settings():
    """Settings isolated from the environment"""
    return Settings(
        environment="test",
        use_stubs=True,
        database_url="sqlite:///:memory:",
        notification_backend="memory",
        enable_demo_offers=False,
        webhook_failure_mode="acknowledge",
        client_url="https://app.example.com",
        _env_file=None,
    )


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so separate sessions see each other's commits"""
    engine = build_engine(f"sqlite:///{tmp_path / 'marketplace.db'}")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return StubCheckoutGateway()


@pytest.fixture
def relay():
    return InMemoryNotificationRelay()


@pytest.fixture
def controller(session_factory, gateway, relay, test_settings):
    return OfferLifecycleController(session_factory, gateway, relay, settings=test_settings)


@pytest.fixture
def webhook_processor(session_factory, gateway, relay, test_settings):
    return WebhookProcessor(session_factory, gateway, relay, settings=test_settings)


@pytest.fixture
def refund_service(session_factory, gateway, relay):
    return RefundService(session_factory, gateway, relay)


@pytest.fixture
def payment_queries(session_factory, gateway):
    return PaymentQueryService(session_factory, gateway)


@pytest.fixture
def reconciler(session_factory):
    return Reconciler(session_factory)


@pytest.fixture
def seller():
    return Actor(user_id=SELLER_ID, role=Role.SELLER)


@pytest.fixture
def buyer():
    return Actor(user_id=BUYER_ID, role=Role.BUYER)


@pytest.fixture
def stranger():
    return Actor(user_id="someone-else")


@pytest.fixture
def admin():
    return Actor(user_id="admin-1", role=Role.ADMIN)


@pytest.fixture
def offer_terms():
    """Valid offer terms as the web client sends them"""
    return {
        "buyerId": BUYER_ID,
        "title": "Logo design",
        "description": "Three logo concepts and a final vector file",
        "price": "50.00",
        "currency": "usd",
        "deliveryTimeDays": 5,
        "revisions": 2,
        "requirements": ["Brand colours"],
        "inclusions": ["SVG", "PNG"],
    }


@pytest.fixture
def sent_offer(controller, seller, offer_terms):
    return controller.create_offer(seller.user_id, offer_terms)


@pytest.fixture
def accepted(controller, sent_offer, buyer):
    """An accepted offer with its pending payment and open checkout session"""
    return controller.accept_offer(sent_offer.id, buyer)


@pytest.fixture
def deliver(webhook_processor, gateway):
    """Sign and process a webhook event as the processor would send it"""

    def _deliver(event_type, data_object, event_id=None):
        payload = gateway.build_event(event_type, data_object, event_id=event_id)
        return webhook_processor.process_webhook(payload, gateway.sign(payload))

    return _deliver


@pytest.fixture
def paid(accepted, gateway, deliver):
    """An offer whose checkout completed; the offer is in progress"""
    session_object = gateway.complete_session(accepted.session.session_id)
    result = deliver("checkout.session.completed", session_object)
    assert result["status"] == "completed"
    return accepted


@pytest.fixture
def expire_offer(session_factory):
    """Move an offer's expiry into the past"""

    def _expire(offer_id):
        with session_factory() as session:
            session.execute(
                update(Offer).where(Offer.id == offer_id).values(expires_at=utcnow() - timedelta(minutes=1))
            )
            session.commit()

    return _expire


@pytest.fixture
def load_offer(session_factory):
    def _load(offer_id):
        with session_factory() as session:
            return session.get(Offer, offer_id)

    return _load


@pytest.fixture
def app(test_settings, session_factory, gateway, relay):
    from main import create_app

    return create_app(settings=test_settings, session_factory=session_factory, gateway=gateway, relay=relay)


@pytest.fixture
def client(app):
    return TestClient(app)


def auth_headers(user_id, role="user"):
    return {"X-User-Id": user_id, "X-User-Role": role}


@pytest.fixture
def seller_headers():
    return auth_headers(SELLER_ID, "seller")


@pytest.fixture
def buyer_headers():
    return auth_headers(BUYER_ID, "buyer")


@pytest.fixture
def admin_headers():
    return auth_headers("admin-1", "admin")


@pytest.fixture
def headers_for():
    return auth_headers
