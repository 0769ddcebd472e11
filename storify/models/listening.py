"""
storify/models/listening.py

Listening status returned by the evaluator and the record request body.
"""

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from storify.models.common import RECORD_CONFIG, REQUEST_CONFIG

REASON_NO_LIMIT = "no_limit"
REASON_FREE_LIMIT = "free_limit"
REASON_GUEST_LIMIT = "guest_limit"


class ListeningStatus(BaseModel):
    """
    Whether an identity may start a new content item.

    limit is None for subscribers. listen_count is the number of distinct
    content ids already consumed by the identity.
    """
    model_config = RECORD_CONFIG

    can_listen: bool
    listen_count: int
    limit: Optional[int] = None
    has_subscription: bool = False
    subscription_ends_at: Optional[datetime] = None
    reason: str


class RecordListenRequest(BaseModel):
    model_config = REQUEST_CONFIG

    content_id: int = Field(validation_alias=AliasChoices("contentId", "bookId", "content_id", "book_id"))
    visitor_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("visitorId", "visitor_id"))
