"""
storify/models/payment.py

Payment transactions and their state machine vocabulary.

    pending -> paid | expired | failed

paid, expired and failed are terminal.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from storify.models.common import RECORD_CONFIG, REQUEST_CONFIG

PENDING = "pending"
PAID = "paid"
EXPIRED = "expired"
FAILED = "failed"

PAYMENT_STATUSES = (PENDING, PAID, EXPIRED, FAILED)
TERMINAL_STATUSES = frozenset({PAID, EXPIRED, FAILED})


class PaymentTransaction(BaseModel):
    model_config = RECORD_CONFIG

    id: int
    user_id: str
    plan_id: int
    amount: int
    status: str
    gateway: str
    gateway_reference: str
    payment_url: Optional[str] = None
    qr_payload: Optional[str] = None
    gateway_data: Dict[str, Any] = Field(default_factory=dict, exclude=True)
    expires_at: datetime
    paid_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class CreatePaymentRequest(BaseModel):
    model_config = REQUEST_CONFIG

    plan_id: int
    gateway: Optional[str] = None


class ManualStatusUpdateRequest(BaseModel):
    model_config = REQUEST_CONFIG

    status: str
