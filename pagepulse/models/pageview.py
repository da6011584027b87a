"""
Pageview record: created once by ingestion, updated in place by engagement
appends, deleted by the retention sweeper.

No column holds a client IP address.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from .types import UTCDateTime, utc_now


class DeviceType(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"


class Pageview(SQLModel, table=True):
    __tablename__ = "pageviews"
    # NULL session_id or hostname never collides (NULL != NULL)
    __table_args__ = (
        UniqueConstraint("added_day", "path", "session_id", "hostname", name="pageviews_unique_composite"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    # Identity & timing (UTC)
    page_id: str = Field(max_length=25, unique=True, index=True)
    added_iso: datetime = Field(index=True, sa_type=UTCDateTime)
    added_day: date = Field(index=True)
    session_id: Optional[str] = Field(default=None, max_length=255, index=True)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)

    # Page context
    hostname: Optional[str] = Field(default=None, max_length=255)
    path: str = Field(max_length=2000, index=True)
    hash: Optional[str] = Field(default=None, max_length=1000)
    query_string: Optional[str] = Field(default=None, max_length=2000)
    document_title: Optional[str] = Field(default=None, max_length=500)
    document_referrer: Optional[str] = Field(default=None, max_length=2000)
    referrer_domain: Optional[str] = Field(default=None, max_length=255, index=True)
    referrer_category: Optional[str] = Field(default=None, max_length=50)

    # Visitor classification (is_unique is computed once, at insert)
    is_unique: bool = Field(default=False)
    is_bot: bool = Field(default=False, index=True)
    is_internal_referrer: bool = Field(default=False)

    # Device & browser
    device_type: str = Field(max_length=10, index=True)  # DeviceType value
    browser_name: Optional[str] = Field(default=None, max_length=100)
    browser_version: Optional[str] = Field(default=None, max_length=50)
    browser_major_version: Optional[str] = Field(default=None, max_length=10)
    os_name: Optional[str] = Field(default=None, max_length=100)
    os_version: Optional[str] = Field(default=None, max_length=50)
    viewport_width: Optional[int] = None
    viewport_height: Optional[int] = None
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None

    # Locale & environment
    language: Optional[str] = Field(default=None, max_length=10)
    timezone: Optional[str] = Field(default=None, max_length=100)
    user_agent: str = Field(default="", max_length=1000)
    country_code: Optional[str] = Field(default=None, max_length=2, index=True)

    # Marketing attribution
    utm_source: Optional[str] = Field(default=None, max_length=255)
    utm_medium: Optional[str] = Field(default=None, max_length=255)
    utm_campaign: Optional[str] = Field(default=None, max_length=255)
    utm_content: Optional[str] = Field(default=None, max_length=255)
    utm_term: Optional[str] = Field(default=None, max_length=255)

    # Engagement (overwritten by appends, last write wins)
    duration_seconds: int = Field(default=0)
    time_on_page_seconds: Optional[int] = None
    scrolled_percentage: Optional[int] = None
    visibility_changes: int = Field(default=0)
