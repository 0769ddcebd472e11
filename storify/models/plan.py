"""
storify/models/plan.py

Subscription plans offered for purchase.
"""

from pydantic import BaseModel

from storify.models.common import RECORD_CONFIG


class SubscriptionPlan(BaseModel):
    """
    A purchasable plan.

    price is in minor currency units (IDR has no sub-unit, so rupiah).
    """
    model_config = RECORD_CONFIG

    id: int
    name: str
    price: int
    duration_days: int
    description: str = ""
    is_active: bool = True
