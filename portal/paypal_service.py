"""PayPal Orders v2 REST client."""
import json
import time
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache

import httpx
import structlog

from portal.config import Settings, get_settings
from portal.errors import UpstreamError

logger = structlog.get_logger(__name__)

WEBHOOK_HEADERS = {
    "transmission_id": "paypal-transmission-id",
    "transmission_time": "paypal-transmission-time",
    "cert_url": "paypal-cert-url",
    "auth_algo": "paypal-auth-algo",
    "transmission_sig": "paypal-transmission-sig",
}


@dataclass
class CaptureResult:
    status: str
    capture_id: str | None
    amount: Decimal | None
    replayed: bool = False

    @property
    def completed(self) -> bool:
        return self.status == "COMPLETED"


def parse_capture(data: dict, replayed: bool = False) -> CaptureResult:
    captures = []
    units = data.get("purchase_units") or []
    if units:
        captures = (units[0].get("payments") or {}).get("captures") or []
    capture = captures[0] if captures else {}
    amount = (capture.get("amount") or {}).get("value")
    return CaptureResult(
        status=data.get("status", ""),
        capture_id=capture.get("id"),
        amount=Decimal(amount) if amount is not None else None,
        replayed=replayed,
    )


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    return body.get("message") or body.get("error_description") or default


def _already_captured(response: httpx.Response) -> bool:
    if response.status_code != 422:
        return False
    try:
        details = response.json().get("details") or []
    except ValueError:
        return False
    return any(d.get("issue") == "ORDER_ALREADY_CAPTURED" for d in details)


class PayPalClient:
    def __init__(self, settings: Settings | None = None, http: httpx.Client | None = None):
        self.settings = settings or get_settings()
        self.http = http or httpx.Client(base_url=self.settings.paypal_api_url, timeout=15.0)
        self._token = None
        self._token_expires_at = 0.0

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        try:
            response = self.http.post(
                "/v1/oauth2/token",
                auth=(self.settings.paypal_client_id, self.settings.paypal_client_secret),
                data={"grant_type": "client_credentials"},
            )
        except httpx.HTTPError as e:
            logger.error("paypal_token_request_failed", error=str(e))
            raise UpstreamError() from e
        if response.is_error:
            logger.error("paypal_token_rejected", status_code=response.status_code)
            raise UpstreamError(_error_message(response, "Failed to get PayPal access token"))
        data = response.json()
        self._token = data["access_token"]
        # refresh a minute early
        self._token_expires_at = time.monotonic() + max(int(data.get("expires_in", 0)) - 60, 0)
        return self._token

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        try:
            return self.http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error("paypal_request_failed", path=path, error=str(e))
            raise UpstreamError() from e

    def create_remote_order(self, amount: Decimal, description: str, reference_id: str) -> str:
        if amount <= 0:
            raise UpstreamError("Order amount must be positive")
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "amount": {"currency_code": "USD", "value": f"{amount:.2f}"},
                    "description": description,
                    "custom_id": reference_id,
                }
            ],
            "application_context": {
                "brand_name": self.settings.brand_name,
                "shipping_preference": "NO_SHIPPING",
                "user_action": "PAY_NOW",
                "return_url": f"{self.settings.app_url}/checkout/success",
                "cancel_url": f"{self.settings.app_url}/checkout/cancel",
            },
        }
        response = self._request("POST", "/v2/checkout/orders", json=payload)
        if response.is_error:
            logger.error(
                "paypal_create_order_rejected",
                status_code=response.status_code,
                reference_id=reference_id,
            )
            raise UpstreamError(_error_message(response, "Failed to create PayPal order"))
        remote_id = response.json()["id"]
        logger.info("paypal_order_created", paypal_order_id=remote_id, reference_id=reference_id)
        return remote_id

    def get_remote_order(self, remote_order_id: str) -> dict:
        response = self._request("GET", f"/v2/checkout/orders/{remote_order_id}")
        if response.is_error:
            raise UpstreamError(_error_message(response, "Failed to fetch PayPal order"))
        return response.json()

    def capture_remote_order(self, remote_order_id: str) -> CaptureResult:
        response = self._request(
            "POST", f"/v2/checkout/orders/{remote_order_id}/capture", json={}
        )
        if _already_captured(response):
            logger.info("paypal_order_already_captured", paypal_order_id=remote_order_id)
            return parse_capture(self.get_remote_order(remote_order_id), replayed=True)
        if response.is_error:
            logger.error(
                "paypal_capture_rejected",
                status_code=response.status_code,
                paypal_order_id=remote_order_id,
            )
            raise UpstreamError(_error_message(response, "Failed to capture PayPal order"))
        return parse_capture(response.json())

    def verify_notification_signature(self, webhook_id: str, headers, raw_body: bytes) -> bool:
        values = {key: headers.get(name) for key, name in WEBHOOK_HEADERS.items()}
        missing = [WEBHOOK_HEADERS[key] for key, value in values.items() if not value]
        if missing:
            logger.error("paypal_webhook_headers_missing", missing=missing)
            return False
        try:
            event = json.loads(raw_body)
        except ValueError:
            logger.error("paypal_webhook_body_invalid")
            return False

        try:
            response = self._request(
                "POST",
                "/v1/notifications/verify-webhook-signature",
                json={**values, "webhook_id": webhook_id, "webhook_event": event},
            )
        except UpstreamError:
            return False
        if response.is_error:
            logger.error("paypal_webhook_verification_failed", status_code=response.status_code)
            return False
        return response.json().get("verification_status") == "SUCCESS"


@lru_cache()
def get_gateway() -> PayPalClient:
    return PayPalClient()
