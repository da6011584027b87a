"""
Custom analytics events (scroll milestones, button clicks, ...).
"""

from datetime import datetime
from typing import Optional

from sqlmodel import Column, Field, JSON, SQLModel

from .types import UTCDateTime


class TrackedEvent(SQLModel, table=True):
    """A named event with small free-form metadata, optionally tied to a pageview."""

    __tablename__ = "events"

    id: Optional[int] = Field(default=None, primary_key=True)
    event_name: str = Field(max_length=255, index=True)
    event_metadata: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    page_id: Optional[str] = Field(default=None, max_length=25, index=True)
    session_id: str = Field(max_length=255, index=True)

    path: str = Field(max_length=2000)
    timestamp: datetime = Field(index=True, sa_type=UTCDateTime)
    country_code: Optional[str] = Field(default=None, max_length=2)
