from abc import ABC, abstractmethod
from typing import List, Mapping, Optional, Sequence, TypedDict
import base64
import hashlib
import hmac
import logging

import httpx
import orjson

from .errors import GatewayError, MalformedWebhook, WebhookSignatureError

logger = logging.getLogger(__name__)

# Cashfree sentinels
ORDER_PAID = "PAID"
PAYMENT_SUCCESS = "SUCCESS"
PAYMENT_SUCCESS_WEBHOOK = "PAYMENT_SUCCESS_WEBHOOK"


# ----------------------------
# Payment Gateway Interface
# ----------------------------
class Customer(TypedDict, total=False):
    customer_id: str
    customer_phone: str
    customer_name: str
    customer_email: str


class CreateOrderResult(TypedDict):
    gateway_order_id: str
    session_id: str


class PaymentGateway(ABC):
    @abstractmethod
    async def create_order(
            self, order_id: str, amount: int, currency: str,
            customer: Customer
    ) -> CreateOrderResult: ...

    # order_status: ACTIVE | PAID | EXPIRED | TERMINATED ...
    @abstractmethod
    async def get_order_status(self, order_id: str) -> str: ...

    # one entry per payment attempt, each with a payment_status
    @abstractmethod
    async def get_order_payments(self, order_id: str) -> List[dict]: ...

    @abstractmethod
    def verify_webhook(
            self, timestamp: str, raw_body: bytes, signature: str
    ) -> bool: ...


def verify_webhook_signature(
        timestamp: str, raw_body: bytes, signature: str, secret: str
) -> bool:
    """HMAC-SHA256 over timestamp + body.

    Cashfree documents a base64 digest, but hex-encoded signatures have been
    seen in the wild, so either encoding is accepted.
    """
    if not (timestamp and signature and secret):
        return False
    mac = hmac.new(
        secret.encode(), timestamp.encode() + raw_body, hashlib.sha256
    ).digest()
    supplied = signature.strip().encode()
    for expected in (base64.b64encode(mac), mac.hex().encode()):
        if hmac.compare_digest(expected, supplied):
            return True
    return False


# ----------------------------
# Cashfree implementation
# ----------------------------
class Cashfree(PaymentGateway):

    def __init__(
        self, http: httpx.AsyncClient, *, base_url: str, app_id: str,
        secret_key: str, webhook_secrets: Sequence[str] = (),
        api_version: str = "2023-08-01",
    ) -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.app_id = app_id
        self.secret_key = secret_key
        self.api_version = api_version
        # de-duplicated, order preserved: dedicated webhook secret first
        self.webhook_secrets = [
            s for i, s in enumerate(webhook_secrets)
            if s and s not in webhook_secrets[:i]
        ]

    def _headers(self) -> dict:
        return {
            "x-client-id": self.app_id,
            "x-client-secret": self.secret_key,
            "x-api-version": self.api_version,
        }

    async def _call(self, method: str, path: str,
                    json: Optional[dict] = None):
        r = await self.http.request(
            method, f"{self.base_url}{path}", headers=self._headers(),
            json=json,
        )
        if r.status_code // 100 != 2:
            try:
                body = r.json()
            except ValueError:
                body = r.text
            logger.error("cashfree %s %s -> %s: %s",
                         method, path, r.status_code, body)
            raise GatewayError(r.status_code, body)
        return r.json()

    async def create_order(
            self, order_id: str, amount: int, currency: str,
            customer: Customer
    ) -> CreateOrderResult:
        data = await self._call("POST", "/orders", json={
            "order_amount": amount,
            "order_currency": currency,
            "order_id": order_id,
            "customer_details": dict(customer),
        })
        return {
            "gateway_order_id": data["order_id"],
            "session_id": data["payment_session_id"],
        }

    async def get_order_status(self, order_id: str) -> str:
        data = await self._call("GET", f"/orders/{order_id}")
        return data.get("order_status", "")

    async def get_order_payments(self, order_id: str) -> List[dict]:
        data = await self._call("GET", f"/orders/{order_id}/payments")
        return data if isinstance(data, list) else []

    def verify_webhook(
            self, timestamp: str, raw_body: bytes, signature: str
    ) -> bool:
        return any(
            verify_webhook_signature(timestamp, raw_body, signature, secret)
            for secret in self.webhook_secrets
        )


# ----------------------------
# Webhook events
# ----------------------------
def read_webhook(gateway: PaymentGateway, headers: Mapping[str, str],
                 raw_body: bytes) -> dict:
    """Authenticate, then parse. Nothing is decoded before the signature
    over the raw bytes has been checked."""
    timestamp = headers.get("x-webhook-timestamp") or ""
    signature = headers.get("x-webhook-signature") or ""
    if not (timestamp and signature and raw_body):
        raise MalformedWebhook("missing signature headers or body")
    if not gateway.verify_webhook(timestamp, raw_body, signature):
        raise WebhookSignatureError("SignatureMismatch")
    try:
        event = orjson.loads(raw_body)
    except orjson.JSONDecodeError as e:
        raise MalformedWebhook("invalid JSON") from e
    if not isinstance(event, dict):
        raise MalformedWebhook("event is not an object")
    return event


def event_kind(event: dict) -> str:
    return event.get("type") or ""


def event_order_id(event: dict) -> str:
    data = event.get("data")
    order = data.get("order") if isinstance(data, dict) else None
    order_id = order.get("order_id") if isinstance(order, dict) else None
    if not order_id or not isinstance(order_id, str):
        raise MalformedWebhook("no data.order.order_id in event")
    return order_id
