"""
Subscription activation and lookup.

A subscription is created from exactly one paid payment transaction.
The unique constraint on originating_transaction_id makes activation
idempotent: concurrent or repeated callers all end up with the same row.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from storify.core.database import get_db_session, subscriptions, as_utc
from storify.core.errors import ConflictError, NotFoundError
from storify.core.metrics import subscriptions_activated_total
from storify.features.plans.service import get_plan
from storify.models.payment import PaymentTransaction, PAID
from storify.models.subscription import Subscription, ACTIVE, EXPIRED

logger = logging.getLogger("storify.subscriptions")


def _normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return as_utc(now)


def _row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row.id,
        user_id=row.user_id,
        plan_id=row.plan_id,
        start_date=as_utc(row.start_date),
        end_date=as_utc(row.end_date),
        status=row.status,
        originating_transaction_id=row.originating_transaction_id,
    )


def get_subscription_for_transaction(transaction_id: int) -> Optional[Subscription]:
    with get_db_session() as session:
        row = session.execute(
            select(subscriptions).where(subscriptions.c.originating_transaction_id == transaction_id)
        ).first()
    return _row_to_subscription(row) if row else None


def activate_if_paid(transaction: PaymentTransaction, now: Optional[datetime] = None) -> Optional[Subscription]:
    """
    Create the subscription for a paid transaction (idempotent).

    Returns None when the transaction is not paid. When another caller has
    already activated this transaction, the existing subscription is
    returned unchanged.
    """
    if transaction.status != PAID:
        return None

    plan = get_plan(transaction.plan_id)
    if plan is None:
        logger.error(f"[subscriptions] plan {transaction.plan_id} missing for transaction {transaction.id}")
        raise NotFoundError("Subscription plan not found")

    start = _normalize_now(now)
    end = start + timedelta(days=plan.duration_days)

    try:
        with get_db_session() as session:
            result = session.execute(
                insert(subscriptions).values(
                    user_id=transaction.user_id,
                    plan_id=plan.id,
                    start_date=start,
                    end_date=end,
                    status=ACTIVE,
                    originating_transaction_id=transaction.id,
                    created_at=start,
                )
            )
            subscription_id = result.inserted_primary_key[0]
    except IntegrityError as e:
        existing = get_subscription_for_transaction(transaction.id)
        if existing is None:
            raise ConflictError(f"Subscription for transaction {transaction.id} could not be created") from e
        logger.info(f"[subscriptions] transaction {transaction.id} already activated")
        return existing

    subscriptions_activated_total.inc()
    logger.info(
        f"[subscriptions] activated plan={plan.name} user={transaction.user_id} until={end.isoformat()}",
        extra={"user_id": transaction.user_id, "transaction_id": transaction.id},
    )
    return Subscription(
        id=subscription_id,
        user_id=transaction.user_id,
        plan_id=plan.id,
        start_date=start,
        end_date=end,
        status=ACTIVE,
        originating_transaction_id=transaction.id,
    )


def get_active_subscription(user_id: str, now: Optional[datetime] = None) -> Optional[Subscription]:
    """Active subscription with the latest end_date still in the future."""
    now = _normalize_now(now)
    with get_db_session() as session:
        row = session.execute(
            select(subscriptions)
            .where(
                subscriptions.c.user_id == user_id,
                subscriptions.c.status == ACTIVE,
                subscriptions.c.end_date > now,
            )
            .order_by(subscriptions.c.end_date.desc())
            .limit(1)
        ).first()
    return _row_to_subscription(row) if row else None


def expire_lapsed_subscriptions(now: Optional[datetime] = None) -> int:
    """Mark active subscriptions whose end_date has passed as expired."""
    now = _normalize_now(now)
    with get_db_session() as session:
        result = session.execute(
            update(subscriptions)
            .where(subscriptions.c.status == ACTIVE, subscriptions.c.end_date <= now)
            .values(status=EXPIRED)
        )
        return result.rowcount or 0
