"""
storify/features/catalog/service.py

Audiobook-summary catalog: browse, search, categories, seeding.
"""

from typing import List, Optional

from sqlalchemy import select, insert, func

from storify.core.database import get_db_session, books
from storify.core.errors import NotFoundError
from storify.models.book import Book, BookCreate

_COVER = "https://images.unsplash.com/{photo}?auto=format&fit=crop&q=80&w=300&h=450"
_AUDIO = "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-{n}.mp3"

DEFAULT_BOOKS = [
    {
        "title": "Atomic Habits",
        "author": "James Clear",
        "description": "An easy & proven way to build good habits & break bad ones.",
        "cover_url": _COVER.format(photo="photo-1589829085413-56de8ae18c73"),
        "audio_url": _AUDIO.format(n=1),
        "duration": 900,
        "category": "Self-Improvement",
        "is_featured": True,
    },
    {
        "title": "Deep Work",
        "author": "Cal Newport",
        "description": "Rules for focused success in a distracted world.",
        "cover_url": _COVER.format(photo="photo-1555449377-5b65f04dc71c"),
        "audio_url": _AUDIO.format(n=2),
        "duration": 1200,
        "category": "Productivity",
        "is_featured": True,
    },
    {
        "title": "The Psychology of Money",
        "author": "Morgan Housel",
        "description": "Timeless lessons on wealth, greed, and happiness.",
        "cover_url": _COVER.format(photo="photo-1579621970563-ebec7560ff3e"),
        "audio_url": _AUDIO.format(n=3),
        "duration": 600,
        "category": "Finance",
        "is_featured": False,
    },
    {
        "title": "Rich Dad Poor Dad",
        "author": "Robert Kiyosaki",
        "description": "What the rich teach their kids about money that the poor and middle class do not.",
        "cover_url": _COVER.format(photo="photo-1554415707-6e8cfc93fe23"),
        "audio_url": _AUDIO.format(n=4),
        "duration": 1500,
        "category": "Finance",
        "is_featured": True,
    },
    {
        "title": "Sapiens",
        "author": "Yuval Noah Harari",
        "description": "A brief history of humankind.",
        "cover_url": _COVER.format(photo="photo-1532012197267-da84d127e765"),
        "audio_url": _AUDIO.format(n=5),
        "duration": 1800,
        "category": "History",
        "is_featured": False,
    },
]


def _row_to_book(row) -> Book:
    return Book.model_validate(dict(row._mapping))


def seed_books() -> int:
    """Insert the starter catalog when the books table is empty."""
    with get_db_session() as session:
        count = session.execute(select(func.count()).select_from(books)).scalar_one()
        if count:
            return 0
        session.execute(insert(books), DEFAULT_BOOKS)
    return len(DEFAULT_BOOKS)


def list_books(
    search: Optional[str] = None,
    category: Optional[str] = None,
    featured: Optional[bool] = None,
) -> List[Book]:
    """Newest first; search is a case-insensitive title substring match."""
    stmt = select(books)
    if search:
        stmt = stmt.where(books.c.title.ilike(f"%{search}%"))
    if category:
        stmt = stmt.where(books.c.category == category)
    if featured is not None:
        stmt = stmt.where(books.c.is_featured.is_(featured))
    stmt = stmt.order_by(books.c.id.desc())
    with get_db_session() as session:
        rows = session.execute(stmt).fetchall()
    return [_row_to_book(row) for row in rows]


def get_book(book_id: int) -> Optional[Book]:
    with get_db_session() as session:
        row = session.execute(select(books).where(books.c.id == book_id)).first()
    return _row_to_book(row) if row else None


def require_book(book_id: int) -> Book:
    book = get_book(book_id)
    if book is None:
        raise NotFoundError("Book not found")
    return book


def create_book(data: BookCreate) -> Book:
    with get_db_session() as session:
        result = session.execute(insert(books).values(**data.model_dump()))
        book_id = result.inserted_primary_key[0]
    return require_book(book_id)


def list_categories() -> List[str]:
    stmt = select(books.c.category).distinct().order_by(books.c.category)
    with get_db_session() as session:
        return [row[0] for row in session.execute(stmt).fetchall()]
