"""
Catalog API.

- GET  /api/books?search=&category=&featured=
- GET  /api/books/{book_id}
- POST /api/books (X-Admin-Key)
- GET  /api/categories
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from storify.core.admin_auth import AdminActor, require_admin
from storify.features.catalog.service import create_book, list_books, list_categories, require_book
from storify.models.book import BookCreate

router = APIRouter(prefix="/api", tags=["books"])


@router.get("/books")
def books_list(
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    featured: Optional[bool] = Query(None),
):
    return [book.model_dump(mode="json", by_alias=True) for book in list_books(search, category, featured)]


@router.get("/books/{book_id}")
def book_detail(book_id: int):
    return require_book(book_id).model_dump(mode="json", by_alias=True)


@router.post("/books", status_code=201)
def book_create(body: BookCreate, actor: AdminActor = Depends(require_admin)):
    return create_book(body).model_dump(mode="json", by_alias=True)


@router.get("/categories")
def categories():
    return list_categories()
