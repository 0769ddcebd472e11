"""
storify/features/library/service.py

Per-user library: favorites and resumable playback progress.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select, insert, update, delete
from sqlalchemy.exc import IntegrityError

from storify.core.database import get_db_session, books, favorites, playback_progress, as_utc
from storify.features.catalog.service import require_book
from storify.models.book import Book, PlaybackProgress

RECENT_LIMIT = 10

_BOOK_COLUMNS = [books.c[name] for name in (
    "id", "title", "author", "description", "cover_url", "audio_url", "duration", "category", "is_featured",
)]


def list_favorites(user_id: str) -> List[Book]:
    stmt = (
        select(*_BOOK_COLUMNS)
        .select_from(favorites.join(books, favorites.c.book_id == books.c.id))
        .where(favorites.c.user_id == user_id)
        .order_by(favorites.c.id.desc())
    )
    with get_db_session() as session:
        rows = session.execute(stmt).fetchall()
    return [Book.model_validate(dict(row._mapping)) for row in rows]


def is_favorite(user_id: str, book_id: int) -> bool:
    with get_db_session() as session:
        row = session.execute(
            select(favorites.c.id).where(
                favorites.c.user_id == user_id,
                favorites.c.book_id == book_id,
            )
        ).first()
    return row is not None


def toggle_favorite(user_id: str, book_id: int) -> bool:
    """Flip favorite state for a book. Returns the new state."""
    require_book(book_id)
    with get_db_session() as session:
        removed = session.execute(
            delete(favorites).where(
                favorites.c.user_id == user_id,
                favorites.c.book_id == book_id,
            )
        ).rowcount
        if removed:
            return False
        try:
            session.execute(insert(favorites).values(user_id=user_id, book_id=book_id))
            session.flush()
        except IntegrityError:
            # Concurrent toggle already added it
            session.rollback()
    return True


def _row_to_progress(row) -> PlaybackProgress:
    return PlaybackProgress(
        book_id=row.book_id,
        progress=row.progress,
        current_time=row.position_seconds,
        updated_at=as_utc(row.updated_at),
    )


def get_progress(user_id: str, book_id: int) -> Optional[PlaybackProgress]:
    with get_db_session() as session:
        row = session.execute(
            select(playback_progress).where(
                playback_progress.c.user_id == user_id,
                playback_progress.c.book_id == book_id,
            )
        ).first()
    return _row_to_progress(row) if row else None


def save_progress(
    user_id: str,
    book_id: int,
    progress: float,
    current_time: float,
    now: Optional[datetime] = None,
) -> PlaybackProgress:
    """Upsert playback position for (user, book)."""
    require_book(book_id)
    now = now or datetime.now(timezone.utc)
    values = {"progress": progress, "position_seconds": current_time, "updated_at": now}
    where = (playback_progress.c.user_id == user_id, playback_progress.c.book_id == book_id)

    with get_db_session() as session:
        updated = session.execute(update(playback_progress).where(*where).values(**values)).rowcount
        if not updated:
            try:
                session.execute(insert(playback_progress).values(user_id=user_id, book_id=book_id, **values))
                session.flush()
            except IntegrityError:
                session.rollback()
                session.execute(update(playback_progress).where(*where).values(**values))

    return PlaybackProgress(book_id=book_id, progress=progress, current_time=current_time, updated_at=now)


def recently_played(user_id: str, limit: int = RECENT_LIMIT) -> List[Dict[str, object]]:
    """Books with saved progress, most recently updated first."""
    stmt = (
        select(*_BOOK_COLUMNS, playback_progress.c.progress, playback_progress.c.position_seconds)
        .select_from(playback_progress.join(books, playback_progress.c.book_id == books.c.id))
        .where(playback_progress.c.user_id == user_id)
        .order_by(playback_progress.c.updated_at.desc())
        .limit(limit)
    )
    with get_db_session() as session:
        rows = session.execute(stmt).fetchall()

    result = []
    for row in rows:
        mapping = dict(row._mapping)
        item = Book.model_validate(mapping).model_dump(mode="json", by_alias=True)
        item["progress"] = mapping["progress"]
        item["currentTime"] = mapping["position_seconds"]
        result.append(item)
    return result
