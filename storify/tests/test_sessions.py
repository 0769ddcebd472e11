"""
Session store and identity resolution.
"""
import pytest

from storify.core.errors import UnauthorizedError
from storify.core.identity import Identity, resolve_identity
from storify.core.sessions import SessionStore


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_session_round_trip_and_destroy():
    store = SessionStore(ttl_seconds=60)
    token = store.create("user-1")

    assert store.get_user_id(token) == "user-1"
    assert store.get_user_id("unknown") is None
    assert store.get_user_id(None) is None

    store.destroy(token)
    assert store.get_user_id(token) is None


def test_expired_session_is_rejected():
    clock = Clock()
    store = SessionStore(ttl_seconds=60, clock=clock)
    token = store.create("user-1")

    clock.now += 60
    assert store.get_user_id(token) is None
    assert len(store) == 0


def test_sweep_removes_only_expired():
    clock = Clock()
    store = SessionStore(ttl_seconds=60, clock=clock)
    store.create("old")
    clock.now += 30
    fresh = store.create("new")
    clock.now += 40

    assert store.sweep() == 1
    assert store.get_user_id(fresh) == "new"


def test_tokens_are_unique():
    store = SessionStore()
    tokens = {store.create("user-1") for _ in range(50)}
    assert len(tokens) == 50


def test_session_beats_visitor_token():
    identity = resolve_identity("user-1", "visitor-9")
    assert identity == Identity(kind="user", id="user-1")
    assert identity.is_authenticated


def test_visitor_identity():
    identity = resolve_identity(None, " visitor-9 ")
    assert identity == Identity.anonymous("visitor-9")
    assert not identity.is_authenticated


@pytest.mark.parametrize("visitor_id", [None, "", "   "])
def test_no_identity_is_unauthorized(visitor_id):
    with pytest.raises(UnauthorizedError):
        resolve_identity(None, visitor_id)
