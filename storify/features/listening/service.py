"""
Listening limits.

Free listening is metered by the number of distinct content items an
identity has started. Guests (visitor token) get GUEST_LISTEN_LIMIT items,
signed-in users without a subscription get FREE_USER_LISTEN_LIMIT, and
subscribers are unmetered. Events are keyed by (identity kind, identity id)
so visitor and user history never mix.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, insert, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from storify.core.config import settings
from storify.core.database import get_db_session, consumption_events
from storify.core.errors import EntitlementDeniedError
from storify.core.identity import Identity
from storify.core.logging import log_event
from storify.core.metrics import listening_records_total, listening_denied_total
from storify.features.subscriptions.service import get_active_subscription
from storify.models.listening import (
    ListeningStatus,
    REASON_NO_LIMIT,
    REASON_FREE_LIMIT,
    REASON_GUEST_LIMIT,
)

logger = logging.getLogger("storify.listening")


def _identity_filter(identity: Identity):
    return (
        consumption_events.c.identity_kind == identity.kind,
        consumption_events.c.identity_id == identity.id,
    )


def count_listened(identity: Identity) -> int:
    """Number of distinct content ids consumed by this identity."""
    with get_db_session() as session:
        return session.execute(
            select(func.count(func.distinct(consumption_events.c.content_id))).where(*_identity_filter(identity))
        ).scalar_one()


def has_listened(identity: Identity, content_id: int) -> bool:
    with get_db_session() as session:
        row = session.execute(
            select(consumption_events.c.id).where(
                *_identity_filter(identity),
                consumption_events.c.content_id == content_id,
            )
        ).first()
    return row is not None


def evaluate(identity: Identity, now: Optional[datetime] = None) -> ListeningStatus:
    """
    Compute the listening status for an identity.

    Reads stored state only; the same state and `now` always yield the
    same status.
    """
    listen_count = count_listened(identity)

    if identity.is_authenticated:
        subscription = get_active_subscription(identity.id, now=now)
        if subscription is not None:
            return ListeningStatus(
                can_listen=True,
                listen_count=listen_count,
                limit=None,
                has_subscription=True,
                subscription_ends_at=subscription.end_date,
                reason=REASON_NO_LIMIT,
            )
        limit = settings.FREE_USER_LISTEN_LIMIT
        reason = REASON_FREE_LIMIT
    else:
        limit = settings.GUEST_LISTEN_LIMIT
        reason = REASON_GUEST_LIMIT

    return ListeningStatus(
        can_listen=listen_count < limit,
        listen_count=listen_count,
        limit=limit,
        has_subscription=False,
        reason=reason,
    )


def ensure_can_listen(identity: Identity, content_id: int, now: Optional[datetime] = None) -> ListeningStatus:
    """
    Gate a play request.

    Content the identity has already started can always be replayed;
    anything new is refused once the limit is reached.
    """
    status = evaluate(identity, now=now)
    if status.can_listen or has_listened(identity, content_id):
        return status

    listening_denied_total.inc(labels={"reason": status.reason})
    log_event(
        "info",
        "listening.denied",
        identity_kind=identity.kind,
        identity_id=identity.id,
        event_type="listening.denied",
        extra={"content_id": content_id, "listen_count": status.listen_count, "limit": status.limit},
    )
    raise EntitlementDeniedError(status)


def record(identity: Identity, content_id: int, now: Optional[datetime] = None) -> bool:
    """
    Record that an identity started a content item.

    Returns True when a new event was stored, False when the pair already
    existed (a unique violation counts as success).
    """
    observed_at = now or datetime.now(timezone.utc)
    try:
        with get_db_session() as session:
            session.execute(
                insert(consumption_events).values(
                    identity_kind=identity.kind,
                    identity_id=identity.id,
                    content_id=content_id,
                    first_observed_at=observed_at,
                )
            )
    except IntegrityError:
        listening_records_total.inc(labels={"identity_kind": identity.kind, "outcome": "duplicate"})
        return False

    listening_records_total.inc(labels={"identity_kind": identity.kind, "outcome": "new"})
    return True


def play(identity: Identity, content_id: int, now: Optional[datetime] = None) -> ListeningStatus:
    """
    Gate and record a play; returns the status after recording.

    Raises EntitlementDeniedError before anything is written when the
    identity is over its limit. A failure to write the event is logged and
    playback proceeds.
    """
    ensure_can_listen(identity, content_id, now=now)
    try:
        record(identity, content_id, now=now)
    except SQLAlchemyError:
        logger.warning(
            "listening.record_failed",
            exc_info=True,
            extra={"identity_kind": identity.kind, "identity_id": identity.id, "content_id": content_id},
        )
    return evaluate(identity, now=now)
