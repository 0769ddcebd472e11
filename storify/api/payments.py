"""
Payment API.

- POST /api/payment/create: Create a pending payment through a gateway
- GET  /api/payment/{transaction_id}: Status, reconciled against the gateway
- POST /api/payment/{transaction_id}/update: Operator status override (X-Admin-Key)
"""
from fastapi import APIRouter, Depends

from storify.core.admin_auth import AdminActor, require_admin
from storify.core.identity import get_current_user_id
from storify.features.billing.service import apply_manual_update, create_payment, get_status
from storify.models.payment import CreatePaymentRequest, ManualStatusUpdateRequest

router = APIRouter(prefix="/api/payment", tags=["payment"])


@router.post("/create")
async def create_payment_endpoint(
    body: CreatePaymentRequest,
    user_id: str = Depends(get_current_user_id),
):
    """
    Errors:
        400: Unknown gateway
        404: Plan not found
        502: Gateway unconfigured or failing (retryable)
    """
    transaction = await create_payment(user_id, body.plan_id, gateway=body.gateway)
    return transaction.model_dump(mode="json", by_alias=True)


@router.get("/{transaction_id}")
async def payment_status(transaction_id: int, user_id: str = Depends(get_current_user_id)):
    transaction = await get_status(transaction_id, user_id)
    return transaction.model_dump(mode="json", by_alias=True)


@router.post("/{transaction_id}/update")
def manual_payment_update(
    transaction_id: int,
    body: ManualStatusUpdateRequest,
    actor: AdminActor = Depends(require_admin),
):
    transaction = apply_manual_update(transaction_id, body.status, actor.actor_id)
    return transaction.model_dump(mode="json", by_alias=True)
