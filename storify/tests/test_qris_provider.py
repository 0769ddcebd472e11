"""
Partner QRIS adapter: login, bearer refresh on 401, create and poll.
"""
import json
import time

import httpx
import jwt
import pytest

from storify.features.billing.provider import BillingProviderError, PaymentRequest
from storify.features.billing.qris_provider import API_PREFIX, LOGIN_PATH, QrisGateway
from storify.features.billing.token_cache import TokenCache


def _jwt(n: int) -> str:
    return jwt.encode({"n": n, "exp": int(time.time()) + 3600}, "partner", algorithm="HS256")


class Partner:
    """Scripted partner API."""

    def __init__(self):
        self.logins = 0
        self.valid_tokens = set()
        self.calls = []
        self.payment_status = "pending"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        if request.url.path == LOGIN_PATH:
            self.logins += 1
            token = _jwt(self.logins)
            self.valid_tokens.add(token)
            return httpx.Response(200, json={"data": {"token": token}})

        auth = request.headers.get("Authorization", "")
        if auth.removeprefix("Bearer ") not in self.valid_tokens:
            return httpx.Response(401, json={"detail": "token expired"})

        if request.url.path == f"{API_PREFIX}/payment/create/":
            body = json.loads(request.content)
            return httpx.Response(201, json={
                "id": "a1b2c3",
                "qris_content": "00020101021226...6304ABCD",
                "expired_at": "2026-03-01T13:00:00+07:00",
                "qris_invoice_id": "QI-1",
                "transaction_number": "TRX-1",
                "echo_plan": body["plan_id"],
            })
        if request.url.path == f"{API_PREFIX}/payment/a1b2c3/":
            return httpx.Response(200, json={"id": "a1b2c3", "status": self.payment_status, "paid_at": "2026-03-01T12:30:00+07:00"})
        return httpx.Response(404)


def _request() -> PaymentRequest:
    return PaymentRequest(
        invoice_number="storify-u1-1",
        user_id="u1",
        plan_id=3,
        plan_name="Tahunan",
        amount=399000,
        customer_email="reader@example.com",
        customer_name="Reader",
        due_minutes=60,
        success_url="http://localhost:5000/subscription?payment=success",
        cancel_url="http://localhost:5000/subscription?payment=cancelled",
    )


def _gateway(partner: Partner) -> QrisGateway:
    return QrisGateway(
        email="ops@storify.app",
        password="pw",
        base_url="https://partner.test",
        client=httpx.AsyncClient(transport=httpx.MockTransport(partner)),
        token_cache=TokenCache(),
    )


@pytest.mark.asyncio
async def test_create_payment_returns_qr_payload():
    partner = Partner()
    payment = await _gateway(partner).create_payment(_request())

    assert partner.logins == 1
    assert payment.reference == "a1b2c3"
    assert payment.qr_payload.startswith("000201")
    assert payment.payment_url is None
    assert payment.expires_at.isoformat() == "2026-03-01T06:00:00+00:00"
    assert payment.gateway_data["qris_invoice_id"] == "QI-1"


@pytest.mark.asyncio
async def test_token_reused_across_calls():
    partner = Partner()
    gateway = _gateway(partner)

    await gateway.create_payment(_request())
    await gateway.check_status("a1b2c3", {})
    assert partner.logins == 1


@pytest.mark.asyncio
async def test_rejected_token_triggers_one_relogin():
    partner = Partner()
    gateway = _gateway(partner)
    await gateway.create_payment(_request())

    partner.valid_tokens.clear()  # partner revoked every token
    partner.payment_status = "paid"
    update = await gateway.check_status("a1b2c3", {})

    assert partner.logins == 2
    assert update.status == "paid"
    assert update.paid_at.isoformat() == "2026-03-01T05:30:00+00:00"


@pytest.mark.asyncio
async def test_unknown_partner_status_stays_pending():
    partner = Partner()
    partner.payment_status = "processing"
    update = await _gateway(partner).check_status("a1b2c3", {})
    assert update.status == "pending"


@pytest.mark.asyncio
async def test_login_failure_raises():
    def handler(request):
        return httpx.Response(400, json={"detail": "bad credentials"})

    gateway = QrisGateway(
        email="ops@storify.app", password="wrong", base_url="https://partner.test",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), token_cache=TokenCache(),
    )
    with pytest.raises(BillingProviderError):
        await gateway.create_payment(_request())


def test_qris_has_no_notifications():
    gateway = _gateway(Partner())
    assert gateway.supports_webhooks is False
    assert gateway.verify_notification({}, b"{}", "/api/webhook/qris") is False
