"""
Identity resolution for listening and payment routes.

A request is attributed either to an authenticated user (valid session
cookie) or to an anonymous visitor (client-generated visitor token). A
valid session always wins and the visitor token is ignored.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from storify.core.config import settings
from storify.core.errors import UnauthorizedError
from storify.core.sessions import get_session_store

USER = "user"
VISITOR = "visitor"


@dataclass(frozen=True)
class Identity:
    kind: str
    id: str

    @classmethod
    def authenticated(cls, user_id: str) -> "Identity":
        return cls(kind=USER, id=user_id)

    @classmethod
    def anonymous(cls, visitor_id: str) -> "Identity":
        return cls(kind=VISITOR, id=visitor_id)

    @property
    def is_authenticated(self) -> bool:
        return self.kind == USER


def resolve_identity(session_user_id: Optional[str], visitor_id: Optional[str]) -> Identity:
    if session_user_id:
        return Identity.authenticated(session_user_id)
    visitor_id = (visitor_id or "").strip()
    if visitor_id:
        return Identity.anonymous(visitor_id)
    raise UnauthorizedError("Login or visitor id required")


def get_session_token(request: Request) -> Optional[str]:
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


def get_session_user_id(request: Request) -> Optional[str]:
    """FastAPI dependency: user id of a valid session, or None."""
    return get_session_store().get_user_id(get_session_token(request))


def get_current_user_id(request: Request) -> str:
    """FastAPI dependency: require an authenticated session."""
    user_id = get_session_user_id(request)
    if not user_id:
        raise UnauthorizedError("Unauthorized")
    return user_id
