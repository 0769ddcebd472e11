"""
Payment gateway protocol.

Every gateway (DOKU Checkout, Xendit invoices, partner QRIS) implements
PaymentGateway. The transaction manager only sees the local vocabulary
(pending/paid/expired/failed); partner status names stay in the adapters.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol, Dict, Any, Mapping, Optional


@dataclass
class PaymentRequest:
    """What the transaction manager asks a gateway to collect."""
    invoice_number: str
    user_id: str
    plan_id: int
    plan_name: str
    amount: int
    customer_email: str
    customer_name: str
    due_minutes: int
    success_url: str
    cancel_url: str


@dataclass
class GatewayPayment:
    """Payable artifact returned by a gateway."""
    reference: str
    expires_at: datetime
    payment_url: Optional[str] = None
    qr_payload: Optional[str] = None
    gateway_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayStatusUpdate:
    """A status observation for one gateway reference (poll or webhook)."""
    reference: str
    status: str  # pending, paid, expired, failed
    paid_at: Optional[datetime] = None
    event_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    """
    Protocol for payment gateways.

    Implementations must handle:
    - Payment creation (payable URL or QR payload plus expiry)
    - Status polling, when supports_polling is set
    - Notification verification and parsing, when supports_webhooks is set
    """

    name: str
    supports_polling: bool
    supports_webhooks: bool

    async def create_payment(self, request: PaymentRequest) -> GatewayPayment:
        """
        Raises:
            BillingProviderError: If the gateway call fails
        """
        ...

    async def check_status(self, reference: str, gateway_data: Dict[str, Any]) -> GatewayStatusUpdate:
        """
        Raises:
            BillingProviderError: If the gateway call fails
        """
        ...

    def verify_notification(self, headers: Mapping[str, str], raw_body: bytes, target_path: str) -> bool:
        """Check notification authenticity. Never raises for bad input."""
        ...

    def parse_notification(self, raw_body: bytes) -> GatewayStatusUpdate:
        """
        Raises:
            BillingWebhookError: If the body cannot be parsed
        """
        ...


class BillingProviderError(Exception):
    """Base exception for payment gateway errors."""

    def __init__(self, message: str, *, gateway: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.gateway = gateway
        self.status_code = status_code


class BillingWebhookError(BillingProviderError):
    """Exception for notification parsing errors."""
    pass


def lower_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {str(k).lower(): v for k, v in headers.items()}


def parse_gateway_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from a gateway; naive values are UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
