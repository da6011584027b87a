"""
Request payload models for the tracking endpoints.

Field caps mirror the database columns. Empty optional strings are
treated as absent before any other check runs.
"""

import json
from datetime import datetime
from typing import Annotated, Any, Dict, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints, field_validator
from pydantic_core import PydanticCustomError

from pagepulse.models.pageview import DeviceType
from pagepulse.models.types import as_utc
from pagepulse.tracker.ids import PAGE_ID_PATTERN

MAX_EVENT_METADATA_BYTES = 5 * 1024
# Largest value an INTEGER column holds on every supported backend
MAX_INT_COLUMN = 2_147_483_647


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def OptionalText(max_length: int, min_length: int = 0):
    return Annotated[
        Optional[Annotated[str, StringConstraints(min_length=min_length, max_length=max_length)]],
        BeforeValidator(_blank_to_none),
    ]


def _parse_timestamp(value: Any) -> datetime:
    """ISO-8601 string -> timezone-aware UTC datetime. A missing offset means UTC."""
    if not isinstance(value, str) or not value.strip():
        raise PydanticCustomError("iso_timestamp", "Must be a valid ISO 8601 timestamp")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise PydanticCustomError("iso_timestamp", "Must be a valid ISO 8601 timestamp")
    return as_utc(parsed)


def _check_path(value: str) -> str:
    if not value.startswith("/"):
        raise PydanticCustomError("path_format", "Path must start with /")
    return value


IsoTimestamp = Annotated[datetime, BeforeValidator(_parse_timestamp)]
PageId = Annotated[str, StringConstraints(pattern=PAGE_ID_PATTERN)]
Path = Annotated[str, StringConstraints(min_length=1, max_length=2000), AfterValidator(_check_path)]
PositiveDimension = Optional[Annotated[int, Field(gt=0, le=100_000)]]


class PageviewPayload(BaseModel):
    """Body of a create call (POST JSON or base64 GET beacon)."""

    model_config = ConfigDict(extra="ignore")

    page_id: PageId
    added_iso: IsoTimestamp
    session_id: OptionalText(255) = None

    hostname: OptionalText(255) = None
    path: Path
    hash: OptionalText(1000) = None
    query_string: OptionalText(2000) = None
    document_title: OptionalText(500) = None
    document_referrer: OptionalText(2000) = None

    device_type: DeviceType
    viewport_width: PositiveDimension = None
    viewport_height: PositiveDimension = None
    screen_width: PositiveDimension = None
    screen_height: PositiveDimension = None

    language: OptionalText(10) = None
    timezone: OptionalText(100) = None
    user_agent: str = Field(max_length=1000)
    # Accepted for compatibility; the stored value always comes from GeoIP
    country_code: OptionalText(2, min_length=2) = None

    utm_source: OptionalText(255) = None
    utm_medium: OptionalText(255) = None
    utm_campaign: OptionalText(255) = None
    utm_content: OptionalText(255) = None
    utm_term: OptionalText(255) = None

    duration_seconds: int = Field(ge=0, le=MAX_INT_COLUMN)
    time_on_page_seconds: Optional[int] = Field(default=None, ge=0, le=MAX_INT_COLUMN)
    scrolled_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    visibility_changes: int = Field(default=0, ge=0, le=MAX_INT_COLUMN)
    is_internal_referrer: bool

    def utm_params(self) -> Dict[str, str]:
        values = {
            "utm_source": self.utm_source,
            "utm_medium": self.utm_medium,
            "utm_campaign": self.utm_campaign,
            "utm_content": self.utm_content,
            "utm_term": self.utm_term,
        }
        return {k: v for k, v in values.items() if v}


class AppendPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    page_id: PageId
    duration_seconds: int = Field(ge=0, le=MAX_INT_COLUMN)
    scrolled_percentage: Optional[int] = Field(default=None, ge=0, le=100)


class EventPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_name: Annotated[str, StringConstraints(min_length=1, max_length=255)]
    event_metadata: Optional[Dict[str, Any]] = None
    page_id: Annotated[Optional[PageId], BeforeValidator(_blank_to_none)] = None
    session_id: Annotated[str, StringConstraints(min_length=1, max_length=255)]
    path: Path
    timestamp: IsoTimestamp

    @field_validator("event_metadata")
    @classmethod
    def _metadata_size(cls, value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if value is None:
            return None
        if len(json.dumps(value).encode("utf-8")) > MAX_EVENT_METADATA_BYTES:
            raise PydanticCustomError("metadata_size", "Event metadata must be less than 5KB")
        return value
