"""
Best-effort activity sink.

Writes happen after the response is sent (FastAPI BackgroundTasks); a
failed write is logged and dropped, never surfaced to the client.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError

from storify.core.database import get_db_session, activity_log

logger = logging.getLogger("storify.activity")


def log_activity(
    user_id: str,
    action: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[Union[str, int]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> bool:
    try:
        with get_db_session() as session:
            session.execute(
                insert(activity_log).values(
                    user_id=user_id,
                    action=action,
                    resource_type=resource_type,
                    resource_id=str(resource_id) if resource_id is not None else None,
                    metadata=metadata,
                    occurred_at=now or datetime.now(timezone.utc),
                )
            )
    except SQLAlchemyError:
        logger.warning(
            f"[activity] failed to record {action} for {user_id}",
            exc_info=True,
            extra={"user_id": user_id, "event_type": "activity.dropped"},
        )
        return False
    return True
