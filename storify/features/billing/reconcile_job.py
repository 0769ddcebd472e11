"""
Scheduled payment reconciliation.

Repairs state that the request path could leave behind:
- pending transactions past expires_at are polled once, then expired
  unless the poll failed
- paid transactions without a subscription are activated
- active subscriptions past end_date are marked expired

A failure on one transaction is logged and counted; the run continues.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from storify.features.billing.service import (
    expire_if_overdue,
    list_overdue_pending,
    list_paid_without_subscription,
    settle_overdue,
)
from storify.features.subscriptions.service import activate_if_paid, expire_lapsed_subscriptions
from storify.models.payment import PENDING, PAID, EXPIRED

logger = logging.getLogger("storify.billing.reconcile")


async def reconcile_payments(now: Optional[datetime] = None, poll: bool = True) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    expired = 0
    deferred = 0
    settled_late = 0
    activated = 0
    errors = 0

    for transaction in list_overdue_pending(now):
        try:
            if poll:
                transaction = await settle_overdue(transaction, now=now, source="reconcile")
            else:
                transaction = expire_if_overdue(transaction, True, source="reconcile", now=now)
        except Exception:
            errors += 1
            logger.error(
                f"[reconcile] transaction {transaction.id} failed",
                exc_info=True,
                extra={"transaction_id": transaction.id, "gateway": transaction.gateway},
            )
            continue
        if transaction.status == EXPIRED:
            expired += 1
        elif transaction.status == PAID:
            settled_late += 1
        elif transaction.status == PENDING:
            deferred += 1

    for transaction in list_paid_without_subscription():
        try:
            if activate_if_paid(transaction, now=now) is not None:
                activated += 1
        except Exception:
            errors += 1
            logger.error(
                f"[reconcile] activation for transaction {transaction.id} failed",
                exc_info=True,
                extra={"transaction_id": transaction.id},
            )

    subscriptions_expired = expire_lapsed_subscriptions(now)

    stats = {
        "transactions_expired": expired,
        "transactions_settled": settled_late,
        "transactions_deferred": deferred,
        "subscriptions_activated": activated,
        "subscriptions_expired": subscriptions_expired,
        "errors": errors,
        "timestamp": now.isoformat(),
    }
    logger.info(f"[reconcile] payments reconciled: {stats}", extra={"event_type": "reconcile.run"})
    return stats


def run_reconcile_job(now: Optional[datetime] = None, poll: bool = True) -> Dict[str, Any]:
    """Synchronous entry point for schedulers and the worker script."""
    return asyncio.run(reconcile_payments(now, poll=poll))
