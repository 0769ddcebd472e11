"""
Gateway notification processing.

Every delivery is logged to payment_notifications before anything else
happens. Unverified deliveries are rejected under the strict policy and
applied with a warning under the warn policy. Duplicate deliveries are
harmless because transitions only ever leave the pending state once.
"""
import hashlib
import logging
from datetime import datetime
from typing import Mapping, Optional

from sqlalchemy import insert, update

from storify.core.config import settings
from storify.core.database import get_db_session, payment_notifications
from storify.core.errors import PaymentGatewayError, ValidationError, VerificationFailedError
from storify.core.logging import log_event
from storify.core.metrics import webhook_notifications_total
from storify.features.billing.provider import BillingWebhookError
from storify.features.billing.service import apply_status_update, get_gateway, get_transaction_by_reference
from storify.models.payment import PENDING

logger = logging.getLogger("storify.billing.webhooks")

POLICY_STRICT = "strict"
POLICY_WARN = "warn"

OUTCOME_APPLIED = "applied"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IGNORED = "ignored"
OUTCOME_REJECTED = "rejected"
OUTCOME_INVALID = "invalid"
OUTCOME_UNKNOWN_GATEWAY = "unknown_gateway"
OUTCOME_UNKNOWN_REFERENCE = "unknown_reference"
OUTCOME_ERROR = "error"


def _log_delivery(gateway: str, raw_body: bytes, verified: bool) -> int:
    with get_db_session() as session:
        result = session.execute(
            insert(payment_notifications).values(
                gateway=gateway,
                payload_hash=hashlib.sha256(raw_body).hexdigest(),
                verified=verified,
                applied=False,
            )
        )
        return result.inserted_primary_key[0]


def _finish_delivery(notification_id: int, **values) -> None:
    with get_db_session() as session:
        session.execute(
            update(payment_notifications)
            .where(payment_notifications.c.id == notification_id)
            .values(**values)
        )


def _outcome(gateway: str, outcome: str, level: str = "info", **extra) -> str:
    webhook_notifications_total.inc(labels={"gateway": gateway, "outcome": outcome})
    log_event(level, f"webhook.{outcome}", gateway=gateway, event_type="webhook", extra=extra or None)
    return outcome


def handle_notification(
    gateway: str,
    headers: Mapping[str, str],
    raw_body: bytes,
    target_path: str,
    now: Optional[datetime] = None,
    policy: Optional[str] = None,
) -> str:
    """
    Verify, log and apply one gateway notification. Returns the outcome.

    Raises only for unexpected failures while parsing or applying; the delivery row
    records the error first.
    """
    policy = policy or settings.WEBHOOK_VERIFICATION_POLICY

    try:
        adapter = get_gateway(gateway)
    except (ValidationError, PaymentGatewayError) as e:
        notification_id = _log_delivery(gateway, raw_body, verified=False)
        _finish_delivery(notification_id, error=str(e))
        return _outcome(gateway, OUTCOME_UNKNOWN_GATEWAY, "warning")

    verified = bool(adapter.supports_webhooks and adapter.verify_notification(headers, raw_body, target_path))
    notification_id = _log_delivery(adapter.name, raw_body, verified=verified)

    if not adapter.supports_webhooks:
        _finish_delivery(notification_id, error="gateway does not send notifications")
        return _outcome(adapter.name, OUTCOME_REJECTED, "warning")

    try:
        status_update = adapter.parse_notification(raw_body)
    except BillingWebhookError as e:
        _finish_delivery(notification_id, error=str(e))
        return _outcome(adapter.name, OUTCOME_INVALID, "warning", error=e)
    except Exception as e:
        _finish_delivery(notification_id, error=f"unparseable notification: {e}"[:500])
        _outcome(adapter.name, OUTCOME_ERROR, "error", error=e)
        raise

    _finish_delivery(notification_id, reference=status_update.reference, event_status=status_update.status)

    if not verified:
        if policy != POLICY_WARN:
            rejection = VerificationFailedError(f"{adapter.name} notification failed verification")
            _finish_delivery(notification_id, error=rejection.code)
            return _outcome(adapter.name, OUTCOME_REJECTED, "warning", reference=status_update.reference, error=rejection)
        log_event(
            "warning",
            "webhook.unverified_applied",
            gateway=adapter.name,
            event_type="webhook",
            error_code="verification_failed",
            extra={"reference": status_update.reference},
        )

    transaction = get_transaction_by_reference(adapter.name, status_update.reference)
    if transaction is None:
        _finish_delivery(notification_id, error="unknown reference")
        return _outcome(adapter.name, OUTCOME_UNKNOWN_REFERENCE, "warning", reference=status_update.reference)

    if status_update.status == PENDING:
        return _outcome(adapter.name, OUTCOME_IGNORED, transaction_id=transaction.id)

    try:
        updated = apply_status_update(transaction.id, status_update, source="webhook", now=now)
    except Exception as e:
        _finish_delivery(notification_id, error=str(e)[:500])
        _outcome(adapter.name, OUTCOME_ERROR, "error", transaction_id=transaction.id, error=e)
        raise

    if transaction.status == PENDING and updated.status == status_update.status:
        _finish_delivery(notification_id, applied=True)
        return _outcome(adapter.name, OUTCOME_APPLIED, transaction_id=transaction.id, status=updated.status)
    return _outcome(adapter.name, OUTCOME_DUPLICATE, transaction_id=transaction.id, status=updated.status)
