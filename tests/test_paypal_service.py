import json
from decimal import Decimal

import httpx
import pytest

from portal.config import Settings
from portal.errors import UpstreamError
from portal.paypal_service import PayPalClient

SIGNED_HEADERS = {
    "paypal-transmission-id": "tx-1",
    "paypal-transmission-time": "2026-10-19T10:00:00Z",
    "paypal-cert-url": "https://api.paypal.com/cert.pem",
    "paypal-auth-algo": "SHA256withRSA",
    "paypal-transmission-sig": "sig",
}


def captured_order(status="COMPLETED", capture_id="CAPTURE-1", value="2000.00"):
    return {
        "id": "PAYPAL-ORDER-1",
        "status": status,
        "purchase_units": [
            {"payments": {"captures": [{"id": capture_id, "amount": {"currency_code": "USD", "value": value}}]}}
        ],
    }


class FakePayPal:
    def __init__(self):
        self.routes = {}
        self.requests = []

    def on(self, method, path, status=200, body=None, exc=None):
        self.routes[(method, path)] = (status, body, exc)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        status, body, exc = self.routes[(request.method, request.url.path)]
        if exc is not None:
            raise exc
        return httpx.Response(status, json=body)

    def calls(self, path):
        return [r for r in self.requests if r.url.path == path]


@pytest.fixture
def paypal():
    return FakePayPal()


@pytest.fixture
def client(paypal):
    settings = Settings()
    http = httpx.Client(transport=httpx.MockTransport(paypal), base_url=settings.paypal_api_url)
    return PayPalClient(settings, http=http)


def test_create_remote_order(client, paypal):
    paypal.on("POST", "/v2/checkout/orders", 201, {"id": "PAYPAL-ORDER-1", "status": "CREATED"})

    remote_id = client.create_remote_order(Decimal("4000"), "Google Ads - Starter Campaign", "order-1")

    assert remote_id == "PAYPAL-ORDER-1"
    request = paypal.calls("/v2/checkout/orders")[0]
    assert request.headers["Authorization"] == "Bearer tok"
    unit = json.loads(request.content)["purchase_units"][0]
    assert unit["amount"] == {"currency_code": "USD", "value": "4000.00"}
    assert unit["custom_id"] == "order-1"


def test_create_remote_order_rejected(client, paypal):
    paypal.on("POST", "/v2/checkout/orders", 400, {"message": "Request is not well-formed"})

    with pytest.raises(UpstreamError):
        client.create_remote_order(Decimal("2000"), "Local SEO Package", "order-1")


def test_create_remote_order_rejects_non_positive_amount(client, paypal):
    with pytest.raises(UpstreamError):
        client.create_remote_order(Decimal("0"), "Nothing", "order-1")
    assert paypal.requests == []


def test_capture_remote_order(client, paypal):
    paypal.on("POST", "/v2/checkout/orders/PAYPAL-ORDER-1/capture", 201, captured_order())

    result = client.capture_remote_order("PAYPAL-ORDER-1")

    assert result.completed
    assert result.capture_id == "CAPTURE-1"
    assert result.amount == Decimal("2000.00")
    assert result.replayed is False


def test_capture_already_captured_returns_existing_capture(client, paypal):
    paypal.on(
        "POST",
        "/v2/checkout/orders/PAYPAL-ORDER-1/capture",
        422,
        {"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "ORDER_ALREADY_CAPTURED"}]},
    )
    paypal.on("GET", "/v2/checkout/orders/PAYPAL-ORDER-1", 200, captured_order())

    result = client.capture_remote_order("PAYPAL-ORDER-1")

    assert result.replayed is True
    assert result.capture_id == "CAPTURE-1"


def test_capture_declined(client, paypal):
    paypal.on(
        "POST",
        "/v2/checkout/orders/PAYPAL-ORDER-1/capture",
        422,
        {"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "INSTRUMENT_DECLINED"}]},
    )

    with pytest.raises(UpstreamError):
        client.capture_remote_order("PAYPAL-ORDER-1")


def test_network_failure_is_upstream_error(client, paypal):
    paypal.on("POST", "/v2/checkout/orders/PAYPAL-ORDER-1/capture",
              exc=httpx.ConnectError("connection refused"))

    with pytest.raises(UpstreamError):
        client.capture_remote_order("PAYPAL-ORDER-1")


def test_access_token_is_reused(client, paypal):
    paypal.on("GET", "/v2/checkout/orders/PAYPAL-ORDER-1", 200, captured_order())

    client.get_remote_order("PAYPAL-ORDER-1")
    client.get_remote_order("PAYPAL-ORDER-1")

    assert len(paypal.calls("/v1/oauth2/token")) == 1


def test_verify_signature_success(client, paypal):
    paypal.on("POST", "/v1/notifications/verify-webhook-signature", 200,
              {"verification_status": "SUCCESS"})
    body = json.dumps({"id": "WH-1", "event_type": "PAYMENT.CAPTURE.COMPLETED"}).encode()

    assert client.verify_notification_signature("WEBHOOK-ID", SIGNED_HEADERS, body) is True

    sent = json.loads(paypal.calls("/v1/notifications/verify-webhook-signature")[0].content)
    assert sent["webhook_id"] == "WEBHOOK-ID"
    assert sent["transmission_sig"] == "sig"
    assert sent["webhook_event"]["id"] == "WH-1"


def test_verify_signature_failure(client, paypal):
    paypal.on("POST", "/v1/notifications/verify-webhook-signature", 200,
              {"verification_status": "FAILURE"})

    assert client.verify_notification_signature("WEBHOOK-ID", SIGNED_HEADERS, b"{}") is False


def test_verify_signature_missing_header_fails_closed(client, paypal):
    headers = dict(SIGNED_HEADERS)
    del headers["paypal-transmission-sig"]

    assert client.verify_notification_signature("WEBHOOK-ID", headers, b"{}") is False
    assert paypal.requests == []
