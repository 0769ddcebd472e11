"""
storify/models/book.py

Catalog entries and per-user library state (favorites, playback progress).
"""

from datetime import datetime

from pydantic import BaseModel, Field

from storify.models.common import RECORD_CONFIG, REQUEST_CONFIG


class Book(BaseModel):
    model_config = RECORD_CONFIG

    id: int
    title: str
    author: str
    description: str
    cover_url: str
    audio_url: str
    duration: int  # seconds
    category: str
    is_featured: bool = False


class BookCreate(BaseModel):
    model_config = REQUEST_CONFIG

    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    description: str
    cover_url: str
    audio_url: str
    duration: int = Field(ge=0)
    category: str = Field(min_length=1)
    is_featured: bool = False


class PlaybackProgress(BaseModel):
    model_config = RECORD_CONFIG

    book_id: int
    progress: float
    current_time: float
    updated_at: datetime


class PlaybackUpdate(BaseModel):
    model_config = REQUEST_CONFIG

    progress: float = Field(ge=0, le=100)
    current_time: float = Field(ge=0)
