"""
storify/models/user.py
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from storify.models.common import RECORD_CONFIG, REQUEST_CONFIG


class User(BaseModel):
    model_config = RECORD_CONFIG

    id: str
    email: str
    name: Optional[str] = None
    created_at: Optional[datetime] = None


class SignupRequest(BaseModel):
    model_config = REQUEST_CONFIG

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=6, max_length=128)
    name: Optional[str] = None


class SigninRequest(BaseModel):
    model_config = REQUEST_CONFIG

    email: str
    password: str
