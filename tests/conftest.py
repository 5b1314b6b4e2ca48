import os

os.environ["DATABASE_URL"] = "sqlite:///./test_portal.db"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["APP_ENV"] = "test"
os.environ["PAYPAL_WEBHOOK_ID"] = ""
os.environ["EMAIL_BACKEND"] = "console"
os.environ["REDIS_URL"] = ""
os.environ["AMOUNT_TOLERANCE"] = "0.02"

import uuid
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from portal.config import get_settings
from portal.database import Base, SessionLocal, engine
from portal.main import app as fastapi_app
from portal.models import Order, Profile, User
from portal.notifications import Notifier, get_notifier
from portal.paypal_service import CaptureResult, PayPalClient, get_gateway
from portal.rate_limit import get_rate_limiter


@pytest.fixture(autouse=True)
def setup_db():
    get_settings.cache_clear()
    get_rate_limiter.cache_clear()
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    get_settings.cache_clear()


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def gateway(mocker):
    gw = mocker.Mock(spec=PayPalClient)
    gw.create_remote_order.return_value = "PAYPAL-ORDER-1"
    return gw


@pytest.fixture
def notifier(mocker):
    return mocker.Mock(spec=Notifier)


@pytest.fixture
def client(gateway, notifier):
    fastapi_app.dependency_overrides[get_gateway] = lambda: gateway
    fastapi_app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def make(user_id="user-1", email="owner@acme-marketing.com"):
        token = jwt.encode({"sub": user_id, "email": email}, "test-jwt-secret", algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}
    return make


@pytest.fixture
def make_user(db):
    def make(user_id=None, email="owner@acme-marketing.com", role="client", full_name=None):
        user = User(id=user_id or str(uuid.uuid4()), email=email)
        db.add(user)
        db.flush()
        db.add(Profile(id=user.id, email=email, role=role, full_name=full_name))
        db.commit()
        return user
    return make


@pytest.fixture
def make_order(db):
    def make(user_id="user-1", product_id="seo-local", amount="2000", status="payment_processing",
             paypal_order_id="PAYPAL-ORDER-1", addons=(), guest_email=None):
        metadata = {"addons": [{"slug": slug} for slug in addons]}
        if guest_email:
            metadata["guest_email"] = guest_email
        order = Order(
            user_id=user_id,
            product_id=product_id,
            amount_usd=Decimal(amount),
            status=status,
            paypal_order_id=paypal_order_id,
            order_metadata=metadata,
        )
        db.add(order)
        db.commit()
        return order
    return make


def completed_capture(capture_id="CAPTURE-1", amount="2000.00", replayed=False):
    return CaptureResult(status="COMPLETED", capture_id=capture_id, amount=Decimal(amount),
                         replayed=replayed)


@pytest.fixture
def capture_result():
    return completed_capture


@pytest.fixture
def webhook_event():
    def make(paypal_order_id="PAYPAL-ORDER-1", capture_id="CAPTURE-1", amount="2000.00",
             event_type="PAYMENT.CAPTURE.COMPLETED"):
        return {
            "id": f"WH-{uuid.uuid4()}",
            "event_type": event_type,
            "resource": {
                "id": capture_id,
                "status": "COMPLETED",
                "amount": {"currency_code": "USD", "value": amount},
                "supplementary_data": {"related_ids": {"order_id": paypal_order_id}},
            },
        }
    return make
