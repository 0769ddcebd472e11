"""
Listening limit API.

- GET  /api/listening/status: Current listening status for the caller
- POST /api/listening/record: Gate and record a play
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from storify.core.identity import get_session_user_id, resolve_identity
from storify.features.catalog.service import require_book
from storify.features.listening.service import evaluate, play
from storify.models.listening import RecordListenRequest

router = APIRouter(prefix="/api/listening", tags=["listening"])


@router.get("/status")
def listening_status(
    visitor_id: Optional[str] = Query(None, alias="visitorId"),
    session_user_id: Optional[str] = Depends(get_session_user_id),
):
    identity = resolve_identity(session_user_id, visitor_id)
    return evaluate(identity).model_dump(mode="json", by_alias=True)


@router.post("/record")
def record_listening(
    body: RecordListenRequest,
    session_user_id: Optional[str] = Depends(get_session_user_id),
):
    """
    Record that the caller started a book.

    Errors:
        401: Neither a session nor a visitor id
        403: Listening limit reached ({message, status})
        404: Unknown book
    """
    identity = resolve_identity(session_user_id, body.visitor_id)
    require_book(body.content_id)
    status = play(identity, body.content_id)
    return {"success": True, "status": status.model_dump(mode="json", by_alias=True)}
