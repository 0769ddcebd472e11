"""
Operator authentication via the X-Admin-Key header.

Used by manual payment updates and catalog writes.
"""
import hashlib
import hmac
from dataclasses import dataclass

from fastapi import Request

from storify.core.config import settings
from storify.core.errors import AppError, UnauthorizedError


@dataclass
class AdminActor:
    """Represents an authenticated operator."""
    actor_id: str  # "key:<hash prefix>"


def verify_admin_key(request: Request):
    expected_key = settings.ADMIN_KEY
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key.encode(), expected_key.encode()):
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(actor_id=f"key:{key_hash}")


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: require a valid X-Admin-Key.

    503 when no key is configured at all, 401 for a wrong or missing key.
    """
    if not settings.ADMIN_KEY:
        raise AppError(
            "Admin authentication not configured",
            code="admin_auth_unconfigured",
            status_code=503,
        )
    actor = verify_admin_key(request)
    if actor is None:
        raise UnauthorizedError("Invalid or missing admin credentials", code="admin_unauthorized")
    return actor
