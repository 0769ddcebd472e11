"""
Payment transaction manager.

Coordinates:
- Gateway selection (doku, xendit, qris)
- Payment creation and local persistence
- Status reconciliation (client poll, webhook, operator update, expiry)
- Subscription activation for paid transactions

Transactions move pending -> paid | expired | failed exactly once; every
transition is a conditional UPDATE on status = 'pending'.
"""
import logging
import secrets
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, insert, update
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from storify.core.config import settings
from storify.core.database import get_db_session, payment_transactions, subscriptions, as_utc
from storify.core.errors import NotFoundError, PaymentGatewayError, ValidationError
from storify.core.logging import log_event
from storify.core.metrics import payment_transitions_total
from storify.features.billing.doku_provider import DokuGateway
from storify.features.billing.provider import (
    BillingProviderError,
    GatewayPayment,
    GatewayStatusUpdate,
    PaymentGateway,
    PaymentRequest,
)
from storify.features.billing.qris_provider import QrisGateway
from storify.features.billing.xendit_provider import XenditGateway
from storify.features.plans.service import get_plan
from storify.features.subscriptions.service import activate_if_paid
from storify.features.users.service import get_user
from storify.models.payment import (
    PaymentTransaction,
    PAYMENT_STATUSES,
    PENDING,
    PAID,
    EXPIRED,
    FAILED,
)

logger = logging.getLogger("storify.billing")

GATEWAY_FACTORIES: Dict[str, Callable[[], PaymentGateway]] = {
    "doku": DokuGateway,
    "xendit": XenditGateway,
    "qris": QrisGateway,
}

_gateway_overrides: Dict[str, PaymentGateway] = {}

MANUAL_STATUSES = (PAID, EXPIRED, FAILED)


def set_gateway_override(name: str, gateway: Optional[PaymentGateway]) -> None:
    """Install a gateway instance for `name` (tests, alternate wiring)."""
    if gateway is None:
        _gateway_overrides.pop(name, None)
    else:
        _gateway_overrides[name] = gateway


def clear_gateway_overrides() -> None:
    _gateway_overrides.clear()


def get_gateway(name: Optional[str] = None) -> PaymentGateway:
    """
    Resolve a gateway adapter by name (default PAYMENT_GATEWAY).

    Raises:
        ValidationError: Unknown gateway
        PaymentGatewayError: Known gateway missing credentials
    """
    gateway_name = (name or settings.PAYMENT_GATEWAY or "").lower()
    if gateway_name in _gateway_overrides:
        return _gateway_overrides[gateway_name]
    factory = GATEWAY_FACTORIES.get(gateway_name)
    if factory is None:
        raise ValidationError(f"Unknown payment gateway: {gateway_name}")
    try:
        return factory()
    except BillingProviderError as e:
        logger.warning(f"[billing] gateway {gateway_name} unavailable: {e}")
        raise PaymentGatewayError(f"Payment gateway not configured: {gateway_name}", gateway=gateway_name) from e


def generate_invoice_number(user_id: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    return f"storify-{user_id}-{millis}-{secrets.token_hex(3)}"


def _normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return as_utc(now)


def _row_to_transaction(row) -> PaymentTransaction:
    return PaymentTransaction(
        id=row.id,
        user_id=row.user_id,
        plan_id=row.plan_id,
        amount=row.amount,
        status=row.status,
        gateway=row.gateway,
        gateway_reference=row.gateway_reference,
        payment_url=row.payment_url,
        qr_payload=row.qr_payload,
        gateway_data=row.gateway_data or {},
        expires_at=as_utc(row.expires_at),
        paid_at=as_utc(row.paid_at),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def get_transaction(transaction_id: int) -> Optional[PaymentTransaction]:
    with get_db_session() as session:
        row = session.execute(
            select(payment_transactions).where(payment_transactions.c.id == transaction_id)
        ).first()
    return _row_to_transaction(row) if row else None


def get_transaction_by_reference(gateway: str, reference: str) -> Optional[PaymentTransaction]:
    with get_db_session() as session:
        row = session.execute(
            select(payment_transactions).where(
                payment_transactions.c.gateway == gateway,
                payment_transactions.c.gateway_reference == reference,
            )
        ).first()
    return _row_to_transaction(row) if row else None


async def create_payment(
    user_id: str,
    plan_id: int,
    gateway: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentTransaction:
    """
    Create a payment for a plan through a gateway and persist it as pending.

    Raises:
        NotFoundError: Plan missing or inactive
        ValidationError: Unknown gateway
        PaymentGatewayError: Gateway unconfigured or its call failed (nothing is stored)
    """
    plan = await run_in_threadpool(get_plan, plan_id)
    if plan is None or not plan.is_active:
        raise NotFoundError("Plan not found")

    adapter = get_gateway(gateway)
    user = await run_in_threadpool(get_user, user_id)
    now = _normalize_now(now)

    request = PaymentRequest(
        invoice_number=generate_invoice_number(user_id, now),
        user_id=user_id,
        plan_id=plan.id,
        plan_name=plan.name,
        amount=plan.price,
        customer_email=(user.email if user else None) or f"{user_id}@storify.app",
        customer_name=(user.name if user else None) or "User",
        due_minutes=settings.PAYMENT_DUE_MINUTES,
        success_url=f"{settings.APP_URL}/subscription?payment=success",
        cancel_url=f"{settings.APP_URL}/subscription?payment=cancelled",
    )

    try:
        payment = await adapter.create_payment(request)
    except BillingProviderError as e:
        log_event(
            "warning",
            "payment.gateway_error",
            gateway=adapter.name,
            event_type="payment.create",
            error_code="gateway_error",
            extra={"user_id": user_id, "plan_id": plan.id, "error": e},
        )
        raise PaymentGatewayError("Payment gateway error, please retry", gateway=adapter.name) from e

    try:
        transaction_id = await run_in_threadpool(_insert_pending, request, plan.price, adapter.name, payment, now)
    except SQLAlchemyError:
        # Gateway holds a payment we could not record locally
        logger.error(
            f"[billing] failed to store {adapter.name} payment reference={payment.reference} user={user_id}",
            exc_info=True,
            extra={"gateway": adapter.name, "user_id": user_id},
        )
        raise

    log_event(
        "info",
        "payment.created",
        transaction_id=transaction_id,
        gateway=adapter.name,
        event_type="payment.create",
        extra={"user_id": user_id, "plan": plan.name, "amount": plan.price},
    )
    return await run_in_threadpool(get_transaction, transaction_id)


def _insert_pending(request: PaymentRequest, amount: int, gateway: str, payment: GatewayPayment, now: datetime) -> int:
    with get_db_session() as session:
        result = session.execute(
            insert(payment_transactions).values(
                user_id=request.user_id,
                plan_id=request.plan_id,
                amount=amount,
                status=PENDING,
                gateway=gateway,
                gateway_reference=payment.reference,
                payment_url=payment.payment_url,
                qr_payload=payment.qr_payload,
                gateway_data=payment.gateway_data,
                expires_at=as_utc(payment.expires_at),
                created_at=now,
                updated_at=now,
            )
        )
        return result.inserted_primary_key[0]


def apply_status_update(
    transaction_id: int,
    status_update: GatewayStatusUpdate,
    source: str,
    now: Optional[datetime] = None,
) -> PaymentTransaction:
    """
    Apply a status observation to a transaction (idempotent).

    Only a pending transaction can change; updates against a terminal
    transaction are no-ops. Whenever the resulting status is paid the
    subscription activator runs, which also repairs a missing activation.
    """
    if status_update.status not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status: {status_update.status}")

    transaction = get_transaction(transaction_id)
    if transaction is None:
        raise NotFoundError("Transaction not found")

    now = _normalize_now(now)

    if status_update.status != PENDING and not transaction.is_terminal:
        values = {
            "status": status_update.status,
            "updated_at": now,
            "gateway_data": {
                **transaction.gateway_data,
                "last_update": {"source": source, **status_update.details},
            },
        }
        if status_update.status == PAID:
            values["paid_at"] = as_utc(status_update.paid_at) or now

        with get_db_session() as session:
            result = session.execute(
                update(payment_transactions)
                .where(
                    payment_transactions.c.id == transaction_id,
                    payment_transactions.c.status == PENDING,
                )
                .values(**values)
            )
            transitioned = result.rowcount == 1

        if transitioned:
            payment_transitions_total.inc(labels={
                "gateway": transaction.gateway,
                "status": status_update.status,
                "source": source,
            })
            log_event(
                "info",
                "payment.transition",
                transaction_id=transaction_id,
                gateway=transaction.gateway,
                event_type=f"payment.{status_update.status}",
                extra={"source": source, "from": PENDING, "to": status_update.status},
            )
        transaction = get_transaction(transaction_id)

    if transaction.status == PAID:
        activate_if_paid(transaction, now=now)
    return transaction


async def get_status(
    transaction_id: int,
    user_id: str,
    now: Optional[datetime] = None,
) -> PaymentTransaction:
    """
    Current state of a user's transaction, reconciling pending ones first.

    Gateway errors during the poll are logged and the last known local
    state is returned; an overdue transaction whose poll failed stays
    pending until a later poll settles it.
    """
    transaction = await run_in_threadpool(get_transaction, transaction_id)
    if transaction is None or transaction.user_id != user_id:
        raise NotFoundError("Transaction not found")

    now = _normalize_now(now)
    if transaction.is_terminal:
        return transaction

    transaction, observed = await _poll(transaction, now)
    return await run_in_threadpool(expire_if_overdue, transaction, observed, source="expiry", now=now)


async def settle_overdue(
    transaction: PaymentTransaction,
    now: Optional[datetime] = None,
    source: str = "reconcile",
) -> PaymentTransaction:
    """Poll an overdue pending transaction, then expire it if the gateway saw no payment."""
    now = _normalize_now(now)
    transaction, observed = await _poll(transaction, now)
    return await run_in_threadpool(expire_if_overdue, transaction, observed, source=source, now=now)


async def _poll(transaction: PaymentTransaction, now: datetime) -> Tuple[PaymentTransaction, bool]:
    """
    Returns the transaction and whether its payment outcome is known.

    The outcome is unknown only when a polling-capable gateway failed to
    answer.
    """
    try:
        adapter = get_gateway(transaction.gateway)
    except (ValidationError, PaymentGatewayError):
        return transaction, True
    if not adapter.supports_polling:
        return transaction, True

    try:
        status_update = await adapter.check_status(transaction.gateway_reference, transaction.gateway_data)
    except BillingProviderError as e:
        log_event(
            "warning",
            "payment.poll_failed",
            transaction_id=transaction.id,
            gateway=transaction.gateway,
            event_type="payment.poll",
            error_code="gateway_error",
            extra={"error": e},
        )
        return transaction, False

    if status_update.status == PENDING:
        return transaction, True
    transaction = await run_in_threadpool(apply_status_update, transaction.id, status_update, source="poll", now=now)
    return transaction, True


def expire_if_overdue(
    transaction: PaymentTransaction,
    outcome_known: bool,
    source: str,
    now: Optional[datetime] = None,
) -> PaymentTransaction:
    now = _normalize_now(now)
    if transaction.status != PENDING or transaction.expires_at > now:
        return transaction
    if not outcome_known:
        log_event(
            "warning",
            "payment.expiry_deferred",
            transaction_id=transaction.id,
            gateway=transaction.gateway,
            event_type="payment.expire",
            extra={"source": source},
        )
        return transaction
    return apply_status_update(
        transaction.id,
        GatewayStatusUpdate(reference=transaction.gateway_reference, status=EXPIRED),
        source=source,
        now=now,
    )


def apply_manual_update(
    transaction_id: int,
    status: str,
    actor_id: str,
    now: Optional[datetime] = None,
) -> PaymentTransaction:
    """Operator-driven transition (paid, expired or failed)."""
    if status not in MANUAL_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(MANUAL_STATUSES)}")
    transaction = get_transaction(transaction_id)
    if transaction is None:
        raise NotFoundError("Transaction not found")
    return apply_status_update(
        transaction_id,
        GatewayStatusUpdate(
            reference=transaction.gateway_reference,
            status=status,
            details={"actor": actor_id},
        ),
        source="manual",
        now=now,
    )


def list_overdue_pending(now: Optional[datetime] = None) -> List[PaymentTransaction]:
    now = _normalize_now(now)
    with get_db_session() as session:
        rows = session.execute(
            select(payment_transactions).where(
                payment_transactions.c.status == PENDING,
                payment_transactions.c.expires_at <= now,
            )
        ).fetchall()
    return [_row_to_transaction(row) for row in rows]


def list_paid_without_subscription() -> List[PaymentTransaction]:
    activated = select(subscriptions.c.originating_transaction_id)
    with get_db_session() as session:
        rows = session.execute(
            select(payment_transactions).where(
                payment_transactions.c.status == PAID,
                payment_transactions.c.id.not_in(activated),
            )
        ).fetchall()
    return [_row_to_transaction(row) for row in rows]
