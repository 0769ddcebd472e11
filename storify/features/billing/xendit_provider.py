"""
Xendit invoice gateway.

Invoices are created with our invoice number as Xendit's external_id, so
callbacks (which carry external_id) map straight back to the local
transaction. The Xendit invoice id is kept in gateway_data for polling.
Callbacks are authenticated by the shared x-callback-token.
"""
import base64
import hmac
import json
import logging
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

INVOICES_PATH = "/v2/invoices"

_STATUS_MAP = {
    "PENDING": PENDING,
    "PAID": PAID,
    "SETTLED": PAID,
    "EXPIRED": EXPIRED,
    "FAILED": FAILED,
}


def map_status(raw_status: Optional[str]) -> str:
    return _STATUS_MAP.get(str(raw_status or "").upper(), PENDING)


class XenditGateway:
    """Xendit implementation of PaymentGateway."""

    name = "xendit"
    supports_polling = True
    supports_webhooks = True

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_token: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.secret_key = secret_key or settings.XENDIT_SECRET_KEY
        self.webhook_token = webhook_token or settings.XENDIT_WEBHOOK_TOKEN
        self.base_url = (base_url or settings.XENDIT_BASE_URL).rstrip("/")
        self._client = client

        if not self.secret_key:
            raise BillingProviderError("XENDIT_SECRET_KEY not configured", gateway=self.name)

    def _auth_headers(self) -> Dict[str, str]:
        credentials = base64.b64encode(f"{self.secret_key}:".encode()).decode("ascii")
        return {"Authorization": f"Basic {credentials}"}

    async def create_payment(self, request: PaymentRequest) -> GatewayPayment:
        payload = {
            "external_id": request.invoice_number,
            "amount": request.amount,
            "description": f"Storify Premium - {request.plan_name}",
            "invoice_duration": request.due_minutes * 60,
            "customer": {
                "given_names": request.customer_name,
                "email": request.customer_email,
            },
            "success_redirect_url": request.success_url,
            "failure_redirect_url": request.cancel_url,
            "currency": "IDR",
            "payment_methods": ["QRIS", "EWALLET", "VIRTUAL_ACCOUNT", "RETAIL_OUTLET"],
        }
        started_at = datetime.now(timezone.utc)

        logger.info(f"[xendit] creating invoice external_id={request.invoice_number} amount={request.amount}")
        async with gateway_client(self._client) as client:
            response = await send(
                client, "POST", f"{self.base_url}{INVOICES_PATH}",
                gateway=self.name, json=payload, headers=self._auth_headers(),
            )
        data = json_or_error(response, gateway=self.name, action="create invoice")

        invoice_url = data.get("invoice_url")
        if not invoice_url or not data.get("id"):
            raise BillingProviderError("xendit invoice response missing id or invoice_url", gateway=self.name)

        expires_at = parse_gateway_datetime(data.get("expiry_date")) or started_at + timedelta(minutes=request.due_minutes)
        return GatewayPayment(
            reference=request.invoice_number,
            payment_url=invoice_url,
            expires_at=expires_at,
            gateway_data={"invoice_id": data["id"]},
        )

    async def check_status(self, reference: str, gateway_data: Dict[str, Any]) -> GatewayStatusUpdate:
        invoice_id = (gateway_data or {}).get("invoice_id")
        if not invoice_id:
            raise BillingProviderError("xendit transaction has no invoice_id", gateway=self.name)
        async with gateway_client(self._client) as client:
            response = await send(
                client, "GET", f"{self.base_url}{INVOICES_PATH}/{invoice_id}",
                gateway=self.name, headers=self._auth_headers(),
            )
        data = json_or_error(response, gateway=self.name, action="get invoice")
        return self._to_update(data, reference=reference)

    def _to_update(self, data: Dict[str, Any], reference: Optional[str] = None) -> GatewayStatusUpdate:
        status = map_status(data.get("status"))
        return GatewayStatusUpdate(
            reference=reference or data.get("external_id"),
            status=status,
            paid_at=parse_gateway_datetime(data.get("paid_at")) if status == PAID else None,
            event_id=data.get("id"),
            details={
                "raw_status": data.get("status"),
                "payment_method": data.get("payment_method"),
                "payment_channel": data.get("payment_channel"),
            },
        )

    def verify_notification(self, headers: Mapping[str, str], raw_body: bytes, target_path: str) -> bool:
        if not self.webhook_token:
            return False
        token = lower_headers(headers).get("x-callback-token")
        if not token:
            return False
        return hmac.compare_digest(token.encode(), self.webhook_token.encode())

    def parse_notification(self, raw_body: bytes) -> GatewayStatusUpdate:
        try:
            data = json.loads(raw_body)
        except ValueError as e:
            raise BillingWebhookError("xendit callback is not valid JSON", gateway=self.name) from e
        if not isinstance(data, dict) or not data.get("external_id") or not isinstance(data["external_id"], str):
            raise BillingWebhookError("xendit callback missing external_id", gateway=self.name)
        return self._to_update(data)
