"""
Library API (favorites and playback progress), authenticated users only.
"""
from fastapi import APIRouter, Depends

from storify.core.errors import NotFoundError
from storify.core.identity import get_current_user_id
from storify.features.library.service import (
    get_progress,
    is_favorite,
    list_favorites,
    recently_played,
    save_progress,
    toggle_favorite,
)
from storify.models.book import PlaybackUpdate

router = APIRouter(prefix="/api", tags=["library"])


@router.get("/favorites")
def favorites_list(user_id: str = Depends(get_current_user_id)):
    return [book.model_dump(mode="json", by_alias=True) for book in list_favorites(user_id)]


@router.post("/favorites/{book_id}")
def favorites_toggle(book_id: int, user_id: str = Depends(get_current_user_id)):
    return {"isFavorite": toggle_favorite(user_id, book_id)}


@router.get("/favorites/{book_id}/check")
def favorites_check(book_id: int, user_id: str = Depends(get_current_user_id)):
    return {"isFavorite": is_favorite(user_id, book_id)}


@router.get("/playback/recent")
def playback_recent(user_id: str = Depends(get_current_user_id)):
    return recently_played(user_id)


@router.get("/playback/{book_id}")
def playback_get(book_id: int, user_id: str = Depends(get_current_user_id)):
    progress = get_progress(user_id, book_id)
    if progress is None:
        raise NotFoundError("No playback progress")
    return progress.model_dump(mode="json", by_alias=True)


@router.post("/playback/{book_id}")
def playback_save(book_id: int, body: PlaybackUpdate, user_id: str = Depends(get_current_user_id)):
    progress = save_progress(user_id, book_id, body.progress, body.current_time)
    return progress.model_dump(mode="json", by_alias=True)
