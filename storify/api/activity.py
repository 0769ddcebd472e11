from fastapi import APIRouter, BackgroundTasks, Depends

from storify.core.identity import get_current_user_id
from storify.features.activity.service import log_activity
from storify.models.activity import ActivityLogRequest

router = APIRouter(prefix="/api/activity", tags=["activity"])


@router.post("/log", status_code=202)
def activity_log(
    body: ActivityLogRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
):
    """Queue an activity row; the write happens after the response."""
    background_tasks.add_task(
        log_activity,
        user_id,
        body.action,
        body.resource_type,
        body.resource_id,
        body.metadata,
    )
    return {"success": True}
