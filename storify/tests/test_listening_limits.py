"""
Listening limit evaluator and consumption recording.

Guests get one distinct book, signed-in users three, subscribers no limit.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from storify.core.database import get_db_session, consumption_events, init_engine, create_all_tables
from storify.core.errors import EntitlementDeniedError
from storify.core.identity import Identity
from storify.features.listening import service as listening_service
from storify.features.listening.service import evaluate, ensure_can_listen, play, record
from storify.features.plans.service import get_plan_by_name
from storify.features.subscriptions.service import activate_if_paid
from storify.models.payment import PaymentTransaction

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _event_count(identity: Identity) -> int:
    with get_db_session() as session:
        return session.execute(
            select(func.count()).select_from(consumption_events).where(
                consumption_events.c.identity_kind == identity.kind,
                consumption_events.c.identity_id == identity.id,
            )
        ).scalar_one()


def _paid_transaction(user_id: str, plan_name: str = "Bulanan", transaction_id: int = 1) -> PaymentTransaction:
    plan = get_plan_by_name(plan_name)
    return PaymentTransaction(
        id=transaction_id,
        user_id=user_id,
        plan_id=plan.id,
        amount=plan.price,
        status="paid",
        gateway="fake",
        gateway_reference=f"ref-{transaction_id}",
        expires_at=NOW + timedelta(hours=1),
        paid_at=NOW,
        created_at=NOW,
        updated_at=NOW,
    )


def test_guest_starts_with_one_listen():
    status = evaluate(Identity.anonymous("visitor-1"))
    assert status.can_listen is True
    assert status.listen_count == 0
    assert status.limit == 1
    assert status.reason == "guest_limit"
    assert status.has_subscription is False


def test_guest_limit_boundary():
    guest = Identity.anonymous("visitor-1")
    assert record(guest, 1) is True

    status = evaluate(guest)
    assert status.listen_count == 1
    assert status.can_listen is False

    # Replaying the same book is always allowed
    assert ensure_can_listen(guest, 1).listen_count == 1

    with pytest.raises(EntitlementDeniedError) as exc:
        play(guest, 2)
    assert exc.value.status.reason == "guest_limit"
    assert exc.value.status_code == 403
    assert _event_count(guest) == 1


def test_free_user_scenario_three_books_then_denied():
    user = Identity.authenticated("user-1")
    for book_id in (1, 2, 3):
        status = play(user, book_id)
    assert status.listen_count == 3
    assert status.can_listen is False
    assert status.limit == 3
    assert status.reason == "free_limit"

    with pytest.raises(EntitlementDeniedError):
        play(user, 4)
    assert _event_count(user) == 3


def test_record_same_book_twice_counts_once():
    user = Identity.authenticated("user-1")
    assert record(user, 2) is True
    assert record(user, 2) is False
    assert evaluate(user).listen_count == 1
    assert _event_count(user) == 1


def test_guest_and_user_histories_do_not_mix():
    guest = Identity.anonymous("shared-id")
    user = Identity.authenticated("shared-id")
    record(guest, 1)

    assert evaluate(user).listen_count == 0
    assert evaluate(user).can_listen is True

    record(user, 2)
    record(user, 3)
    assert evaluate(guest).listen_count == 1


def test_evaluate_is_pure_for_same_state_and_now():
    user = Identity.authenticated("user-1")
    record(user, 1)
    assert evaluate(user, now=NOW) == evaluate(user, now=NOW)
    assert _event_count(user) == 1


def test_subscriber_is_unlimited_and_still_counted():
    user = Identity.authenticated("user-1")
    for book_id in (1, 2, 3):
        record(user, book_id)
    subscription = activate_if_paid(_paid_transaction("user-1"), now=NOW)

    status = evaluate(user, now=NOW + timedelta(days=1))
    assert status.can_listen is True
    assert status.limit is None
    assert status.has_subscription is True
    assert status.reason == "no_limit"
    assert status.listen_count == 3
    assert status.subscription_ends_at == subscription.end_date

    assert play(user, 4, now=NOW + timedelta(days=1)).listen_count == 4


def test_subscription_lapse_restores_free_limit():
    user = Identity.authenticated("user-1")
    for book_id in (1, 2, 3):
        record(user, book_id)
    activate_if_paid(_paid_transaction("user-1", plan_name="Mingguan"), now=NOW)

    status = evaluate(user, now=NOW + timedelta(days=8))
    assert status.has_subscription is False
    assert status.can_listen is False


def test_status_serializes_with_camel_case_keys():
    payload = evaluate(Identity.anonymous("v")).model_dump(mode="json", by_alias=True)
    assert set(payload) == {"canListen", "listenCount", "limit", "hasSubscription", "subscriptionEndsAt", "reason"}


def test_play_proceeds_when_recording_fails(monkeypatch, caplog):
    guest = Identity.anonymous("visitor-1")

    def broken_record(identity, content_id, now=None):
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    monkeypatch.setattr(listening_service, "record", broken_record)

    with caplog.at_level(logging.WARNING, logger="storify.listening"):
        status = play(guest, 1, now=NOW)

    assert status.listen_count == 0
    assert status.can_listen is True
    assert "listening.record_failed" in caplog.text
    assert _event_count(guest) == 0


def test_concurrent_record_yields_single_event(tmp_path):
    init_engine(f"sqlite:///{tmp_path / 'concurrency.db'}")
    create_all_tables()
    user = Identity.authenticated("user-race")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: record(user, 5), range(16)))

    assert results.count(True) == 1
    assert _event_count(user) == 1
