"""
Partner-hosted QRIS gateway.

The partner API authenticates with a JWT obtained from a login endpoint.
Tokens are shared process-wide through a TokenCache. The partner has no
callbacks, so payment state is learned by polling.
"""
import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from storify.core.config import settings
from storify.features.billing.http import gateway_client, json_or_error, send
from storify.features.billing.provider import (
    BillingProviderError,
    GatewayPayment,
    GatewayStatusUpdate,
    PaymentRequest,
    parse_gateway_datetime,
)
from storify.features.billing.token_cache import TokenCache
from storify.models.payment import PAYMENT_STATUSES, PENDING, PAID

logger = logging.getLogger("storify.billing")

LOGIN_PATH = "/api/auth/login/"
API_PREFIX = "/api/storify-subscription"

# Shared by every QrisGateway that is not given its own cache.
qris_token_cache = TokenCache()


class QrisGateway:
    """Partner QRIS implementation of PaymentGateway."""

    name = "qris"
    supports_polling = True
    supports_webhooks = False

    def __init__(
        self,
        email: Optional[str] = None,
        password: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        token_cache: Optional[TokenCache] = None,
    ):
        self.email = email or settings.PEWACA_EMAIL
        self.password = password or settings.PEWACA_PASSWORD
        self.base_url = (base_url or settings.PEWACA_BASE_URL).rstrip("/")
        self._client = client
        self.token_cache = token_cache or qris_token_cache

        if not self.email or not self.password:
            raise BillingProviderError("PEWACA_EMAIL / PEWACA_PASSWORD not configured", gateway=self.name)

    async def _login(self, client: httpx.AsyncClient) -> str:
        logger.info("[qris] logging in for partner token")
        response = await send(
            client, "POST", f"{self.base_url}{LOGIN_PATH}",
            gateway=self.name, json={"email": self.email, "password": self.password},
        )
        data = json_or_error(response, gateway=self.name, action="login")
        token = (data.get("data") or {}).get("token")
        if not token:
            raise BillingProviderError("qris login response missing token", gateway=self.name)
        return token

    async def _authorized(self, client: httpx.AsyncClient, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send with the cached bearer token; on 401 re-login once and retry."""
        for attempt in (1, 2):
            token = await self.token_cache.get(lambda: self._login(client))
            response = await send(
                client, method, f"{self.base_url}{API_PREFIX}{path}",
                gateway=self.name, headers={"Authorization": f"Bearer {token}"}, **kwargs,
            )
            if response.status_code == 401 and attempt == 1:
                logger.info("[qris] token rejected, refreshing")
                self.token_cache.invalidate()
                continue
            return response
        return response

    async def create_payment(self, request: PaymentRequest) -> GatewayPayment:
        body = {
            "plan_id": request.plan_id,
            "user_email": request.customer_email,
            "user_name": request.customer_name,
            "storify_user_id": request.user_id,
        }
        async with gateway_client(self._client) as client:
            response = await self._authorized(client, "POST", "/payment/create/", json=body)
        data = json_or_error(response, gateway=self.name, action="create payment")

        reference = data.get("id")
        expires_at = parse_gateway_datetime(data.get("expired_at"))
        if not reference or not data.get("qris_content") or expires_at is None:
            raise BillingProviderError("qris payment response missing id, qris_content or expired_at", gateway=self.name)

        return GatewayPayment(
            reference=str(reference),
            qr_payload=data["qris_content"],
            expires_at=expires_at,
            gateway_data={
                "qris_invoice_id": data.get("qris_invoice_id"),
                "transaction_number": data.get("transaction_number"),
            },
        )

    async def check_status(self, reference: str, gateway_data: Dict[str, Any]) -> GatewayStatusUpdate:
        async with gateway_client(self._client) as client:
            response = await self._authorized(client, "GET", f"/payment/{reference}/")
        data = json_or_error(response, gateway=self.name, action="payment status")

        status = data.get("status") if data.get("status") in PAYMENT_STATUSES else PENDING
        return GatewayStatusUpdate(
            reference=reference,
            status=status,
            paid_at=parse_gateway_datetime(data.get("paid_at")) if status == PAID else None,
            details={
                "payment_customer_name": data.get("payment_customer_name"),
                "payment_method_by": data.get("payment_method_by"),
            },
        )

    def verify_notification(self, headers: Mapping[str, str], raw_body: bytes, target_path: str) -> bool:
        return False

    def parse_notification(self, raw_body: bytes) -> GatewayStatusUpdate:
        raise BillingProviderError("qris gateway does not send notifications", gateway=self.name)
