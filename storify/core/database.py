"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite)
- Table definitions for the whole service
"""
from typing import Optional
from contextlib import contextmanager
from datetime import datetime, timezone
import logging
import os

from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Float, Index, UniqueConstraint
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func

from storify.core.config import settings


logger = logging.getLogger("storify.database")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"))


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if _engine is not None:
        _engine.dispose()

    if url.startswith("sqlite"):
        # One shared connection for in-memory databases; file databases get
        # a regular pool so concurrent writers contend on SQLite's lock.
        kwargs = {"connect_args": {"check_same_thread": False}}
        if _is_memory_sqlite(url):
            kwargs["poolclass"] = StaticPool
        _engine = create_engine(url, echo=False, **kwargs)
    else:
        # Create engine with connection pooling
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize datetimes read back from the store to aware UTC.

    SQLite drops tzinfo on round-trip; everything is written in UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Users table
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('email', String(255), nullable=False, unique=True),
    Column('password_hash', String(255), nullable=False),
    Column('name', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_users_created_at', 'created_at'),
)

# Consumption events: one row per distinct (identity, content) pair.
# The unique constraint is the at-most-once guard for concurrent plays.
consumption_events = Table(
    'consumption_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('identity_kind', String(20), nullable=False),  # 'user' | 'visitor'
    Column('identity_id', String(100), nullable=False),
    Column('content_id', Integer, nullable=False),
    Column('first_observed_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('identity_kind', 'identity_id', 'content_id', name='uq_consumption_events_identity_content'),
    Index('idx_consumption_events_identity', 'identity_kind', 'identity_id'),
)

# Subscription plans (read-mostly reference data)
subscription_plans = Table(
    'subscription_plans',
    metadata,
    Column('plan_id', Integer, primary_key=True, autoincrement=True),
    Column('name', String(100), nullable=False, unique=True),
    Column('price', Integer, nullable=False),  # minor units (IDR)
    Column('duration_days', Integer, nullable=False),
    Column('description', Text, nullable=True),
    Column('is_active', Boolean, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Payment transactions. Each gateway owns its reference id space.
payment_transactions = Table(
    'payment_transactions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('plan_id', Integer, nullable=False),
    Column('amount', Integer, nullable=False),
    Column('status', String(20), nullable=False, index=True),  # pending, paid, expired, failed
    Column('gateway', String(20), nullable=False),
    Column('gateway_reference', String(255), nullable=False),
    Column('payment_url', Text, nullable=True),
    Column('qr_payload', Text, nullable=True),
    Column('gateway_data', JSON, nullable=True),
    Column('expires_at', DateTime(timezone=True), nullable=False),
    Column('paid_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('gateway', 'gateway_reference', name='uq_payment_transactions_gateway_ref'),
    Index('idx_payment_transactions_status_expires', 'status', 'expires_at'),
)

# Subscriptions. originating_transaction_id is the activation guard.
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('plan_id', Integer, nullable=False),
    Column('start_date', DateTime(timezone=True), nullable=False),
    Column('end_date', DateTime(timezone=True), nullable=False),
    Column('status', String(20), nullable=False),  # active, expired, cancelled
    Column('originating_transaction_id', Integer, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('originating_transaction_id', name='uq_subscriptions_originating_txn'),
    Index('idx_subscriptions_user_status_end', 'user_id', 'status', 'end_date'),
)

# Webhook delivery log (every delivery, verified or not)
payment_notifications = Table(
    'payment_notifications',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('gateway', String(20), nullable=False),
    Column('reference', String(255), nullable=True),
    Column('event_status', String(50), nullable=True),
    Column('payload_hash', String(64), nullable=False),  # SHA256 of raw body
    Column('verified', Boolean, nullable=False, server_default='0'),
    Column('applied', Boolean, nullable=False, server_default='0'),
    Column('error', Text, nullable=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_payment_notifications_gateway_ref', 'gateway', 'reference'),
)

# Activity log (best-effort sink)
activity_log = Table(
    'activity_log',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('action', String(100), nullable=False),
    Column('resource_type', String(100), nullable=True),
    Column('resource_id', String(255), nullable=True),
    Column('metadata', JSON, nullable=True),
    Column('occurred_at', DateTime(timezone=True), nullable=False),
)

# Catalog
books = Table(
    'books',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('title', Text, nullable=False),
    Column('author', Text, nullable=False),
    Column('description', Text, nullable=False),
    Column('cover_url', Text, nullable=False),
    Column('audio_url', Text, nullable=False),
    Column('duration', Integer, nullable=False),  # seconds
    Column('category', String(100), nullable=False, index=True),
    Column('is_featured', Boolean, nullable=False, server_default='0'),
)

favorites = Table(
    'favorites',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('book_id', Integer, nullable=False),
    UniqueConstraint('user_id', 'book_id', name='uq_favorites_user_book'),
)

playback_progress = Table(
    'playback_progress',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('book_id', Integer, nullable=False),
    Column('progress', Float, nullable=False),  # percent 0-100
    Column('position_seconds', Float, nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('user_id', 'book_id', name='uq_playback_progress_user_book'),
    Index('idx_playback_progress_user_updated', 'user_id', 'updated_at'),
)
