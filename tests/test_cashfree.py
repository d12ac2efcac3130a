import base64
import hashlib
import hmac
import json

import httpx
import orjson
import pytest

from takshashila.cashfree import (
    Cashfree, event_kind, event_order_id, read_webhook,
    verify_webhook_signature,
)
from takshashila.errors import (
    GatewayError, MalformedWebhook, WebhookSignatureError,
)

BASE = "https://sandbox.cashfree.com/pg"


def _mac(secret: str, ts: str, body: bytes) -> bytes:
    return hmac.new(secret.encode(), ts.encode() + body,
                    hashlib.sha256).digest()


# ----------------------------
# Webhook signatures
# ----------------------------
def test_signature_base64_and_hex_accepted():
    body = b'{"type":"PAYMENT_SUCCESS_WEBHOOK"}'
    mac = _mac("s", "1700000000", body)
    b64 = base64.b64encode(mac).decode()
    assert verify_webhook_signature("1700000000", body, b64, "s")
    assert verify_webhook_signature("1700000000", body, mac.hex(), "s")


def test_signature_rejects_other_body_or_secret():
    body = b'{"a":1}'
    sig = base64.b64encode(_mac("s", "1", body)).decode()
    assert not verify_webhook_signature("1", b'{"a":2}', sig, "s")
    assert not verify_webhook_signature("2", body, sig, "s")
    assert not verify_webhook_signature("1", body, sig, "other")
    assert not verify_webhook_signature("1", body, "", "s")
    assert not verify_webhook_signature("1", body, sig, "")


def _client(handler) -> Cashfree:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return Cashfree(http, base_url=BASE, app_id="app", secret_key="api",
                    webhook_secrets=("hook", "api", "hook"))


def test_webhook_secrets_are_deduplicated():
    cf = _client(lambda req: httpx.Response(200))
    assert cf.webhook_secrets == ["hook", "api"]


def test_either_configured_secret_verifies():
    cf = _client(lambda req: httpx.Response(200))
    body = b"{}"
    for secret in ("hook", "api"):
        sig = base64.b64encode(_mac(secret, "9", body)).decode()
        assert cf.verify_webhook("9", body, sig)
    sig = base64.b64encode(_mac("nope", "9", body)).decode()
    assert not cf.verify_webhook("9", body, sig)


# ----------------------------
# REST calls
# ----------------------------
async def test_create_order_sends_credentials_and_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "order_id": "order_1", "payment_session_id": "sess_1",
        })

    result = await _client(handler).create_order(
        "order_1", 500, "INR",
        {"customer_id": "u1", "customer_phone": "+919876543210"},
    )
    assert result == {"gateway_order_id": "order_1", "session_id": "sess_1"}
    assert seen["url"] == f"{BASE}/orders"
    assert seen["headers"]["x-client-id"] == "app"
    assert seen["headers"]["x-client-secret"] == "api"
    assert seen["headers"]["x-api-version"] == "2023-08-01"
    assert seen["body"]["order_amount"] == 500
    assert seen["body"]["order_currency"] == "INR"
    assert seen["body"]["customer_details"]["customer_id"] == "u1"


async def test_order_status_and_payments():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/payments"):
            return httpx.Response(200, json=[
                {"payment_status": "FAILED"},
                {"payment_status": "SUCCESS"},
            ])
        return httpx.Response(200, json={"order_status": "PAID"})

    cf = _client(handler)
    assert await cf.get_order_status("order_1") == "PAID"
    payments = await cf.get_order_payments("order_1")
    assert [p["payment_status"] for p in payments] == ["FAILED", "SUCCESS"]


async def test_non_2xx_raises_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "order not found",
                                         "code": "order_not_found"})

    with pytest.raises(GatewayError) as ei:
        await _client(handler).get_order_status("order_x")
    assert ei.value.status_code == 404
    assert ei.value.message == "order not found"


async def test_non_json_error_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    with pytest.raises(GatewayError) as ei:
        await _client(handler).get_order_payments("order_x")
    assert ei.value.message == "bad gateway"


# ----------------------------
# Webhook events
# ----------------------------
def _signed(body: bytes, secret: str = "hook", ts: str = "1700000000"):
    return {
        "x-webhook-timestamp": ts,
        "x-webhook-signature": base64.b64encode(_mac(secret, ts, body))
        .decode(),
    }


def test_read_webhook_checks_signature_before_parsing():
    cf = _client(lambda req: httpx.Response(200))
    body = b"this is not json"
    with pytest.raises(WebhookSignatureError):
        read_webhook(cf, _signed(body, secret="wrong"), body)
    # correctly signed garbage is malformed, not a signature problem
    with pytest.raises(MalformedWebhook):
        read_webhook(cf, _signed(body), body)


def test_read_webhook_missing_headers():
    cf = _client(lambda req: httpx.Response(200))
    with pytest.raises(MalformedWebhook):
        read_webhook(cf, {}, b"{}")
    with pytest.raises(MalformedWebhook):
        read_webhook(cf, _signed(b""), b"")


def test_event_fields():
    cf = _client(lambda req: httpx.Response(200))
    body = orjson.dumps({
        "type": "PAYMENT_SUCCESS_WEBHOOK",
        "data": {"order": {"order_id": "order_1"}},
    })
    event = read_webhook(cf, _signed(body), body)
    assert event_kind(event) == "PAYMENT_SUCCESS_WEBHOOK"
    assert event_order_id(event) == "order_1"


@pytest.mark.parametrize("event", [
    {"type": "PAYMENT_SUCCESS_WEBHOOK"},
    {"data": {}},
    {"data": {"order": {}}},
    {"data": {"order": {"order_id": 12}}},
    {"data": ["order"]},
])
def test_event_without_order_id(event):
    with pytest.raises(MalformedWebhook):
        event_order_id(event)
