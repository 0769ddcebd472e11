"""
User accounts.
- create_user(email, password, name)
- authenticate(email, password)
- get_user(user_id)
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

import bcrypt
from sqlalchemy import select, insert
from sqlalchemy.exc import IntegrityError

from storify.core.database import get_db_session, users as app_users
from storify.core.errors import ValidationError, UnauthorizedError
from storify.models.user import User

BCRYPT_ROUNDS = 12
# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX_BYTES = 72


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode()[:_BCRYPT_MAX_BYTES], bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode()[:_BCRYPT_MAX_BYTES], password_hash.encode())
    except ValueError:
        return False


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _row_to_user(row) -> User:
    return User(id=row.user_id, email=row.email, name=row.name, created_at=row.created_at)


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
    return _row_to_user(row) if row else None


def create_user(email: str, password: str, name: Optional[str] = None) -> User:
    email = normalize_email(email)
    if "@" not in email:
        raise ValidationError("Invalid email address")

    user_id = uuid.uuid4().hex
    now = datetime.now(timezone.utc)
    try:
        with get_db_session() as session:
            session.execute(
                insert(app_users).values(
                    user_id=user_id,
                    email=email,
                    password_hash=hash_password(password),
                    name=name,
                    created_at=now,
                )
            )
    except IntegrityError:
        raise ValidationError("Email already registered")

    return User(id=user_id, email=email, name=name, created_at=now)


def authenticate(email: str, password: str) -> User:
    """Return the user for valid credentials, else raise UnauthorizedError."""
    with get_db_session() as session:
        row = session.execute(
            select(app_users).where(app_users.c.email == normalize_email(email))
        ).first()
    if not row or not verify_password(password, row.password_hash):
        raise UnauthorizedError("Invalid email or password", code="invalid_credentials")
    return _row_to_user(row)
