"""
DOKU Checkout adapter: request signing, checkout, polling, notifications.
"""
import base64
import hashlib
import hmac
import json

import httpx
import pytest

from storify.features.billing import http as billing_http
from storify.features.billing.doku_provider import (
    CHECKOUT_PATH,
    DokuGateway,
    generate_digest,
    generate_signature,
    map_status,
)
from storify.features.billing.provider import BillingProviderError, BillingWebhookError, PaymentRequest

CLIENT_ID = "BRN-0001"
SECRET = "SK-test-secret"
BASE_URL = "https://api-sandbox.doku.test"


def _request(**overrides) -> PaymentRequest:
    values = dict(
        invoice_number="storify-u1-1700000000000-abc123",
        user_id="u1",
        plan_id=2,
        plan_name="Bulanan",
        amount=49000,
        customer_email="reader@example.com",
        customer_name="Reader",
        due_minutes=60,
        success_url="http://localhost:5000/subscription?payment=success",
        cancel_url="http://localhost:5000/subscription?payment=cancelled",
    )
    values.update(overrides)
    return PaymentRequest(**values)


def _gateway(handler) -> DokuGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DokuGateway(client_id=CLIENT_ID, secret_key=SECRET, base_url=BASE_URL, client=client)


def _expected_signature(component: str) -> str:
    mac = hmac.new(SECRET.encode(), component.encode(), hashlib.sha256).digest()
    return "HMACSHA256=" + base64.b64encode(mac).decode()


def test_signature_matches_component_string():
    body = b'{"order":{"amount":49000}}'
    digest = base64.b64encode(hashlib.sha256(body).digest()).decode()
    assert generate_digest(body) == digest

    component = (
        f"Client-Id:{CLIENT_ID}\n"
        "Request-Id:req-1\n"
        "Request-Timestamp:2026-03-01T12:00:00Z\n"
        "Request-Target:/checkout/v1/payment\n"
        f"Digest:{digest}"
    )
    signature = generate_signature(CLIENT_ID, "req-1", "2026-03-01T12:00:00Z", CHECKOUT_PATH, SECRET, digest)
    assert signature == _expected_signature(component)


def test_signature_without_body_omits_digest_line():
    component = (
        f"Client-Id:{CLIENT_ID}\n"
        "Request-Id:req-2\n"
        "Request-Timestamp:2026-03-01T12:00:00Z\n"
        "Request-Target:/orders/v1/status/inv-1"
    )
    signature = generate_signature(CLIENT_ID, "req-2", "2026-03-01T12:00:00Z", "/orders/v1/status/inv-1", SECRET)
    assert signature == _expected_signature(component)


def test_unconfigured_gateway_raises(monkeypatch):
    from storify.core.config import settings

    monkeypatch.setattr(settings, "DOKU_CLIENT_ID", None)
    monkeypatch.setattr(settings, "DOKU_SECRET_KEY", None)
    with pytest.raises(BillingProviderError):
        DokuGateway()


@pytest.mark.asyncio
async def test_create_payment_sends_signed_checkout():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(200, json={
            "message": ["SUCCESS"],
            "response": {
                "order": {"invoice_number": "storify-u1-1700000000000-abc123", "session_id": "sess-1"},
                "payment": {
                    "url": "https://checkout.doku.test/pay/abc",
                    "token_id": "tok-1",
                    "expired_date": "20260301130000",
                },
            },
        })

    payment = await _gateway(handler).create_payment(_request())

    sent = seen["request"]
    assert sent.method == "POST"
    assert sent.url.path == CHECKOUT_PATH
    assert sent.headers["Client-Id"] == CLIENT_ID
    assert sent.headers["Content-Type"] == "application/json"

    body = sent.content
    component = (
        f"Client-Id:{CLIENT_ID}\n"
        f"Request-Id:{sent.headers['Request-Id']}\n"
        f"Request-Timestamp:{sent.headers['Request-Timestamp']}\n"
        f"Request-Target:{CHECKOUT_PATH}\n"
        f"Digest:{generate_digest(body)}"
    )
    assert sent.headers["Signature"] == _expected_signature(component)

    payload = json.loads(body)
    assert payload["order"]["amount"] == 49000
    assert payload["order"]["currency"] == "IDR"
    assert payload["payment"]["payment_due_date"] == 60
    assert payload["customer"]["email"] == "reader@example.com"

    assert payment.reference == "storify-u1-1700000000000-abc123"
    assert payment.payment_url == "https://checkout.doku.test/pay/abc"
    assert payment.gateway_data["token_id"] == "tok-1"
    assert payment.gateway_data["expired_date"] == "20260301130000"


@pytest.mark.asyncio
async def test_create_payment_error_response_raises():
    gateway = _gateway(lambda request: httpx.Response(400, json={"error": {"message": "invalid amount"}}))
    with pytest.raises(BillingProviderError) as exc:
        await gateway.create_payment(_request())
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_create_payment_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="unavailable")

    with pytest.raises(BillingProviderError):
        await _gateway(handler).create_payment(_request())
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_check_status_retries_get_once(monkeypatch):
    monkeypatch.setattr(billing_http, "RETRY_BACKOFF_SECONDS", 0)
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(500, text="oops")
        return httpx.Response(200, json={
            "order": {"invoice_number": "inv-1"},
            "transaction": {"status": "SUCCESS", "date": "2026-03-01T12:05:00Z"},
        })

    update = await _gateway(handler).check_status("inv-1", {})

    assert len(calls) == 2
    assert calls[0].url.path == "/orders/v1/status/inv-1"
    assert "Digest" not in calls[0].headers
    assert update.status == "paid"
    assert update.paid_at.isoformat() == "2026-03-01T12:05:00+00:00"


@pytest.mark.parametrize("raw, expected", [
    ("SUCCESS", "paid"),
    ("success", "paid"),
    ("FAILED", "failed"),
    ("EXPIRED", "expired"),
    ("PENDING", "pending"),
    ("TIMEOUT", "pending"),
    (None, "pending"),
])
def test_map_status(raw, expected):
    assert map_status(raw) == expected


def _notification_headers(body: bytes, target: str, client_id: str = CLIENT_ID, secret: str = SECRET):
    signature = generate_signature(client_id, "notif-1", "2026-03-01T12:06:00Z", target, secret, generate_digest(body))
    return {
        "Client-Id": client_id,
        "Request-Id": "notif-1",
        "Request-Timestamp": "2026-03-01T12:06:00Z",
        "Signature": signature,
    }


def test_verify_notification():
    gateway = DokuGateway(client_id=CLIENT_ID, secret_key=SECRET, base_url=BASE_URL)
    body = json.dumps({"order": {"invoice_number": "inv-1"}, "transaction": {"status": "SUCCESS"}}).encode()
    target = "/api/webhook/doku"

    assert gateway.verify_notification(_notification_headers(body, target), body, target) is True
    # Tampered body
    assert gateway.verify_notification(_notification_headers(body, target), body + b" ", target) is False
    # Foreign client id signed with its own secret
    assert gateway.verify_notification(_notification_headers(body, target, "BRN-9999", "other"), body, target) is False
    # Wrong secret
    assert gateway.verify_notification(_notification_headers(body, target, secret="nope"), body, target) is False
    # Missing headers
    assert gateway.verify_notification({}, body, target) is False


def test_parse_notification():
    gateway = DokuGateway(client_id=CLIENT_ID, secret_key=SECRET, base_url=BASE_URL)
    body = json.dumps({
        "order": {"invoice_number": "inv-1", "amount": 49000},
        "transaction": {"status": "SUCCESS", "date": "2026-03-01T12:05:00Z", "original_request_id": "orig-1"},
        "channel": {"id": "VIRTUAL_ACCOUNT_BCA"},
    }).encode()

    update = gateway.parse_notification(body)
    assert update.reference == "inv-1"
    assert update.status == "paid"
    assert update.event_id == "orig-1"
    assert update.details["channel"] == "VIRTUAL_ACCOUNT_BCA"

    with pytest.raises(BillingWebhookError):
        gateway.parse_notification(b"{}")
    with pytest.raises(BillingWebhookError):
        gateway.parse_notification(b"<xml/>")


@pytest.mark.parametrize("payload", [
    {"order": "oops"},
    {"order": {"invoice_number": "inv-1"}, "transaction": ["SUCCESS"]},
    {"order": {"invoice_number": "inv-1"}, "channel": "VA"},
    {"order": {"invoice_number": 42}},
])
def test_parse_notification_rejects_malformed_sections(payload):
    gateway = DokuGateway(client_id=CLIENT_ID, secret_key=SECRET, base_url=BASE_URL)
    with pytest.raises(BillingWebhookError):
        gateway.parse_notification(json.dumps(payload).encode())


@pytest.mark.asyncio
async def test_status_with_malformed_transaction_is_a_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"order": {"invoice_number": "inv-1"}, "transaction": "SUCCESS"})

    with pytest.raises(BillingProviderError):
        await _gateway(handler).check_status("inv-1", {})
