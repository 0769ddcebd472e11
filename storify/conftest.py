# storify/conftest.py
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from storify.core.config import settings
from storify.core.database import init_engine, create_all_tables
from storify.core.metrics import METRICS
from storify.core.sessions import SessionStore, set_session_store
from storify.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    GatewayPayment,
    GatewayStatusUpdate,
    PaymentRequest,
)
from storify.features.billing import service as billing_service
from storify.features.catalog.service import seed_books
from storify.features.plans.service import seed_plans
from storify.features.users import service as users_service

ADMIN_KEY = "test-admin-key"


class FakeGateway:
    """In-memory PaymentGateway used by service and API tests."""

    name = "fake"
    supports_polling = True
    supports_webhooks = True
    webhook_secret = "fake-secret"

    def __init__(self):
        self.created: List[PaymentRequest] = []
        self.statuses: Dict[str, str] = {}
        self.fail_create = False
        self.fail_status = False
        self.status_calls = 0

    async def create_payment(self, request: PaymentRequest) -> GatewayPayment:
        if self.fail_create:
            raise BillingProviderError("fake gateway down", gateway=self.name)
        self.created.append(request)
        reference = f"fake-{len(self.created)}"
        self.statuses[reference] = "pending"
        return GatewayPayment(
            reference=reference,
            payment_url=f"https://pay.example/{reference}",
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=request.due_minutes),
            gateway_data={"request_no": len(self.created)},
        )

    async def check_status(self, reference: str, gateway_data: Dict[str, Any]) -> GatewayStatusUpdate:
        self.status_calls += 1
        if self.fail_status:
            raise BillingProviderError("fake gateway timeout", gateway=self.name)
        return GatewayStatusUpdate(reference=reference, status=self.statuses.get(reference, "pending"))

    def verify_notification(self, headers, raw_body: bytes, target_path: str) -> bool:
        return {k.lower(): v for k, v in headers.items()}.get("x-fake-signature") == self.webhook_secret

    def parse_notification(self, raw_body: bytes) -> GatewayStatusUpdate:
        try:
            data = json.loads(raw_body)
        except ValueError as e:
            raise BillingWebhookError("bad json", gateway=self.name) from e
        return GatewayStatusUpdate(reference=data["reference"], status=data["status"], event_id=data.get("event_id"))


@pytest.fixture(autouse=True)
def storify_env(monkeypatch):
    """Fresh in-memory database, seeded catalog, isolated sessions and metrics."""
    monkeypatch.setattr(settings, "PAYMENT_GATEWAY", "fake")
    monkeypatch.setattr(settings, "WEBHOOK_VERIFICATION_POLICY", "strict")
    monkeypatch.setattr(settings, "ADMIN_KEY", ADMIN_KEY)
    monkeypatch.setattr(settings, "GUEST_LISTEN_LIMIT", 1)
    monkeypatch.setattr(settings, "FREE_USER_LISTEN_LIMIT", 3)
    monkeypatch.setattr(settings, "PAYMENT_DUE_MINUTES", 60)
    monkeypatch.setattr(users_service, "BCRYPT_ROUNDS", 4)

    init_engine("sqlite://")
    create_all_tables()
    seed_plans()
    seed_books()

    METRICS.reset()
    set_session_store(SessionStore())
    billing_service.clear_gateway_overrides()
    yield
    billing_service.clear_gateway_overrides()
    set_session_store(None)


@pytest.fixture
def fake_gateway():
    gateway = FakeGateway()
    billing_service.set_gateway_override(gateway.name, gateway)
    return gateway


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from storify.main import app

    return TestClient(app)


@pytest.fixture
def make_user():
    def _make(email: str = "reader@example.com", password: str = "secret123", name: Optional[str] = "Reader"):
        return users_service.create_user(email, password, name)
    return _make


@pytest.fixture
def login(client):
    """Attach a fresh session cookie for `user_id` to the test client."""
    from storify.core.sessions import get_session_store

    def _login(user_id: str) -> str:
        token = get_session_store().create(user_id)
        client.cookies.set(settings.SESSION_COOKIE_NAME, token)
        return token
    return _login


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": ADMIN_KEY}
