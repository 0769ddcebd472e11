"""
Subscription API.

- GET /api/subscription/plans: Active plans, cheapest first
- GET /api/subscription/active: Caller's active subscription or null
"""
from fastapi import APIRouter, Depends

from storify.core.identity import get_current_user_id
from storify.features.plans.service import get_plan, list_plans
from storify.features.subscriptions.service import get_active_subscription

router = APIRouter(prefix="/api/subscription", tags=["subscription"])


@router.get("/plans")
def subscription_plans():
    return [plan.model_dump(mode="json", by_alias=True) for plan in list_plans()]


@router.get("/active")
def active_subscription(user_id: str = Depends(get_current_user_id)):
    subscription = get_active_subscription(user_id)
    if subscription is None:
        return None
    payload = subscription.model_dump(mode="json", by_alias=True)
    plan = get_plan(subscription.plan_id)
    payload["plan"] = plan.model_dump(mode="json", by_alias=True) if plan else None
    return payload
