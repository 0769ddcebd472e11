"""
DOKU Checkout gateway.

Implements PaymentGateway against the DOKU Checkout API:
- POST /checkout/v1/payment creates a hosted payment page
- GET /orders/v1/status/{invoice_number} polls the order status
- HTTP notifications are signed with the same HMAC scheme as requests

Request signature:
    Digest    = base64(sha256(body))
    Component = "Client-Id:{id}\\nRequest-Id:{rid}\\nRequest-Timestamp:{ts}\\n"
                "Request-Target:{path}[\\nDigest:{digest}]"
    Signature = "HMACSHA256=" + base64(hmac_sha256(secret, component))
"""
import base64
import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

import httpx

from storify.core.config import settings
from storify.features.billing.http import gateway_client, json_or_error, send
from storify.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    GatewayPayment,
    GatewayStatusUpdate,
    PaymentRequest,
    lower_headers,
    parse_gateway_datetime,
)
from storify.models.payment import PENDING, PAID, EXPIRED, FAILED

logger = logging.getLogger("storify.billing")

CHECKOUT_PATH = "/checkout/v1/payment"
STATUS_PATH = "/orders/v1/status/{invoice_number}"

PAYMENT_METHOD_TYPES = [
    "QRIS",
    "VIRTUAL_ACCOUNT_BCA",
    "VIRTUAL_ACCOUNT_BANK_MANDIRI",
    "VIRTUAL_ACCOUNT_BRI",
    "VIRTUAL_ACCOUNT_BNI",
    "VIRTUAL_ACCOUNT_DOKU",
    "EMONEY_SHOPEE_PAY",
    "EMONEY_OVO",
]

_STATUS_MAP = {
    "SUCCESS": PAID,
    "PAID": PAID,
    "FAILED": FAILED,
    "EXPIRED": EXPIRED,
    "PENDING": PENDING,
}


def generate_digest(body: bytes) -> str:
    return base64.b64encode(hashlib.sha256(body).digest()).decode("ascii")


def generate_signature(
    client_id: str,
    request_id: str,
    request_timestamp: str,
    request_target: str,
    secret_key: str,
    digest: Optional[str] = None,
) -> str:
    component = (
        f"Client-Id:{client_id}\n"
        f"Request-Id:{request_id}\n"
        f"Request-Timestamp:{request_timestamp}\n"
        f"Request-Target:{request_target}"
    )
    if digest is not None:
        component += f"\nDigest:{digest}"
    mac = hmac.new(secret_key.encode(), component.encode(), hashlib.sha256).digest()
    return "HMACSHA256=" + base64.b64encode(mac).decode("ascii")


def request_timestamp(now: Optional[datetime] = None) -> str:
    """UTC timestamp without fractional seconds, e.g. 2024-01-01T00:00:00Z."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def map_status(raw_status: Optional[str]) -> str:
    return _STATUS_MAP.get(str(raw_status or "").upper(), PENDING)


def payload_section(data: Dict[str, Any], key: str, error_cls=BillingProviderError) -> Dict[str, Any]:
    """Nested object `key` of a DOKU payload; absent sections read as empty."""
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise error_cls(f"doku payload field {key!r} is not an object", gateway="doku")
    return value


class DokuGateway:
    """DOKU implementation of PaymentGateway."""

    name = "doku"
    supports_polling = True
    supports_webhooks = True

    def __init__(
        self,
        client_id: Optional[str] = None,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.client_id = client_id or settings.DOKU_CLIENT_ID
        self.secret_key = secret_key or settings.DOKU_SECRET_KEY
        self.base_url = (base_url or settings.DOKU_BASE_URL).rstrip("/")
        self._client = client

        if not self.client_id or not self.secret_key:
            raise BillingProviderError("DOKU_CLIENT_ID / DOKU_SECRET_KEY not configured", gateway=self.name)

    def _signed_headers(self, request_target: str, body: Optional[bytes]) -> Dict[str, str]:
        request_id = str(uuid.uuid4())
        timestamp = request_timestamp()
        digest = generate_digest(body) if body is not None else None
        headers = {
            "Client-Id": self.client_id,
            "Request-Id": request_id,
            "Request-Timestamp": timestamp,
            "Signature": generate_signature(
                self.client_id, request_id, timestamp, request_target, self.secret_key, digest
            ),
        }
        if body is not None:
            headers["Content-Type"] = "application/json"
        return headers

    def build_checkout_body(self, request: PaymentRequest) -> Dict[str, Any]:
        return {
            "order": {
                "amount": request.amount,
                "invoice_number": request.invoice_number,
                "currency": "IDR",
                "callback_url": request.success_url,
                "callback_url_cancel": request.cancel_url,
                "language": "ID",
                "auto_redirect": True,
                "disable_retry_payment": False,
                "line_items": [
                    {"name": f"Storify Premium - {request.plan_name}", "quantity": 1, "price": request.amount},
                ],
            },
            "payment": {
                "payment_due_date": request.due_minutes,
                "payment_method_types": PAYMENT_METHOD_TYPES,
            },
            "customer": {
                "name": request.customer_name,
                "email": request.customer_email,
            },
        }

    async def create_payment(self, request: PaymentRequest) -> GatewayPayment:
        body = json.dumps(self.build_checkout_body(request), separators=(",", ":")).encode()
        headers = self._signed_headers(CHECKOUT_PATH, body)
        request_id = headers["Request-Id"]
        started_at = datetime.now(timezone.utc)

        logger.info(f"[doku] creating checkout invoice={request.invoice_number} amount={request.amount}")
        async with gateway_client(self._client) as client:
            response = await send(client, "POST", f"{self.base_url}{CHECKOUT_PATH}", gateway=self.name, content=body, headers=headers)
        data = json_or_error(response, gateway=self.name, action="checkout")

        payload = payload_section(data, "response")
        payment = payload_section(payload, "payment")
        order = payload_section(payload, "order")
        payment_url = payment.get("url")
        if not payment_url:
            raise BillingProviderError("doku checkout response missing payment url", gateway=self.name)

        return GatewayPayment(
            reference=request.invoice_number,
            payment_url=payment_url,
            expires_at=started_at + timedelta(minutes=request.due_minutes),
            gateway_data={
                "request_id": request_id,
                "session_id": order.get("session_id"),
                "token_id": payment.get("token_id"),
                "expired_date": payment.get("expired_date"),
            },
        )

    async def check_status(self, reference: str, gateway_data: Dict[str, Any]) -> GatewayStatusUpdate:
        target = STATUS_PATH.format(invoice_number=reference)
        headers = self._signed_headers(target, None)
        async with gateway_client(self._client) as client:
            response = await send(client, "GET", f"{self.base_url}{target}", gateway=self.name, headers=headers)
        data = json_or_error(response, gateway=self.name, action="status")
        return self._to_update(reference, data)

    def _to_update(self, reference: str, data: Dict[str, Any]) -> GatewayStatusUpdate:
        transaction = payload_section(data, "transaction")
        status = map_status(transaction.get("status"))
        paid_at = parse_gateway_datetime(transaction.get("date")) if status == PAID else None
        return GatewayStatusUpdate(
            reference=reference,
            status=status,
            paid_at=paid_at,
            event_id=transaction.get("original_request_id"),
            details={"raw_status": transaction.get("status"), "channel": payload_section(data, "channel").get("id")},
        )

    def verify_notification(self, headers: Mapping[str, str], raw_body: bytes, target_path: str) -> bool:
        h = lower_headers(headers)
        client_id = h.get("client-id")
        request_id = h.get("request-id")
        timestamp = h.get("request-timestamp")
        signature = h.get("signature")
        if not (client_id and request_id and timestamp and signature):
            return False
        if not hmac.compare_digest(client_id.encode(), self.client_id.encode()):
            return False
        expected = generate_signature(
            client_id, request_id, timestamp, target_path, self.secret_key, generate_digest(raw_body)
        )
        return hmac.compare_digest(expected.encode(), signature.encode())

    def parse_notification(self, raw_body: bytes) -> GatewayStatusUpdate:
        try:
            data = json.loads(raw_body)
        except ValueError as e:
            raise BillingWebhookError("doku notification is not valid JSON", gateway=self.name) from e
        if not isinstance(data, dict):
            raise BillingWebhookError("doku notification has unexpected shape", gateway=self.name)
        for key in ("order", "transaction", "channel"):
            payload_section(data, key, error_cls=BillingWebhookError)
        reference = payload_section(data, "order").get("invoice_number")
        if not reference or not isinstance(reference, str):
            raise BillingWebhookError("doku notification missing order.invoice_number", gateway=self.name)
        return self._to_update(reference, data)
