"""
In-process session store for cookie-based login.

Sessions map an opaque random token to a user id with an absolute expiry.
Expired entries are rejected on lookup and removed by a periodic sweeper
task started from the application lifespan.
"""
import asyncio
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from storify.core.config import settings

logger = logging.getLogger("storify.sessions")


@dataclass(frozen=True)
class SessionRecord:
    user_id: str
    expires_at: float


class SessionStore:
    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.SESSION_TTL_SECONDS
        self._clock = clock
        self._sessions: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._sessions[token] = SessionRecord(user_id=user_id, expires_at=self._clock() + self.ttl_seconds)
        return token

    def get_user_id(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        with self._lock:
            record = self._sessions.get(token)
            if record is None:
                return None
            if record.expires_at <= self._clock():
                del self._sessions[token]
                return None
            return record.user_id

    def destroy(self, token: Optional[str]) -> None:
        if not token:
            return
        with self._lock:
            self._sessions.pop(token, None)

    def sweep(self) -> int:
        """Remove expired sessions. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [token for token, record in self._sessions.items() if record.expires_at <= now]
            for token in expired:
                del self._sessions[token]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        _store = SessionStore()
    return _store


def set_session_store(store: Optional[SessionStore]) -> None:
    """Swap the process-wide store (tests)."""
    global _store
    _store = store


async def run_session_sweeper(interval_seconds: Optional[int] = None) -> None:
    """Sweep expired sessions forever; cancelled on shutdown."""
    interval = interval_seconds or settings.SESSION_SWEEP_INTERVAL_SECONDS
    while True:
        await asyncio.sleep(interval)
        removed = get_session_store().sweep()
        if removed:
            logger.info(f"[sessions] swept {removed} expired sessions")
