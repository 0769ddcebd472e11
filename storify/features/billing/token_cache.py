"""
Bearer-token cache for partner APIs that use short-lived JWT logins.

The token is reused until shortly before its `exp` claim. Tokens whose
expiry cannot be read are kept for a fixed fallback TTL. A 401 from the
partner should call invalidate() and retry once with a fresh login.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import jwt

logger = logging.getLogger("storify.billing")

REFRESH_MARGIN_SECONDS = 300
FALLBACK_TTL_SECONDS = 3600


class TokenCache:
    def __init__(
        self,
        *,
        refresh_margin_seconds: int = REFRESH_MARGIN_SECONDS,
        fallback_ttl_seconds: int = FALLBACK_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.refresh_margin_seconds = refresh_margin_seconds
        self.fallback_ttl_seconds = fallback_ttl_seconds
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def peek(self) -> Optional[str]:
        """Cached token if still fresh, without logging in."""
        if self._token and self._clock() < self._expires_at:
            return self._token
        return None

    def store(self, token: str) -> None:
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
            exp = float(claims["exp"])
            self._expires_at = exp - self.refresh_margin_seconds
        except (jwt.PyJWTError, KeyError, TypeError, ValueError):
            self._expires_at = self._clock() + self.fallback_ttl_seconds
        self._token = token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def get(self, login: Callable[[], Awaitable[str]]) -> str:
        """Return a fresh token, calling `login` at most once per refresh."""
        token = self.peek()
        if token:
            return token
        async with self._lock:
            token = self.peek()
            if token:
                return token
            token = await login()
            self.store(token)
            logger.info("[token_cache] token refreshed")
            return token
