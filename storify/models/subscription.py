"""
storify/models/subscription.py
"""

from datetime import datetime

from pydantic import BaseModel

from storify.models.common import RECORD_CONFIG

ACTIVE = "active"
EXPIRED = "expired"
CANCELLED = "cancelled"


class Subscription(BaseModel):
    """A paid entitlement window created from exactly one paid transaction."""
    model_config = RECORD_CONFIG

    id: int
    user_id: str
    plan_id: int
    start_date: datetime
    end_date: datetime
    status: str
    originating_transaction_id: int
