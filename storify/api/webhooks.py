"""
Gateway notification endpoint.

POST /api/webhook/{gateway} always answers 200 {"message": "OK"} so
gateways stop retrying; the outcome is recorded in payment_notifications.
"""
import logging

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from storify.features.billing.webhooks import handle_notification

logger = logging.getLogger("storify.billing.webhooks")

router = APIRouter(prefix="/api/webhook", tags=["webhooks"])


@router.post("/{gateway}")
async def gateway_notification(gateway: str, request: Request):
    # Raw body is required for signature verification
    body = await request.body()
    try:
        await run_in_threadpool(handle_notification, gateway, dict(request.headers), body, request.url.path)
    except Exception:
        logger.error(f"[webhook] {gateway} notification processing failed", exc_info=True)
    return {"message": "OK"}
