"""
storify/models/activity.py
"""

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field

from storify.models.common import REQUEST_CONFIG


class ActivityLogRequest(BaseModel):
    model_config = REQUEST_CONFIG

    action: str = Field(min_length=1, max_length=100)
    resource_type: Optional[str] = None
    resource_id: Optional[Union[str, int]] = None
    metadata: Optional[Dict[str, Any]] = None
