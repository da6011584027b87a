"""
Turns untrusted request bodies into either a typed payload or a list of
per-field errors. Nothing here raises for bad input.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Generic, List, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from pagepulse.schemas import AppendPayload, EventPayload, PageviewPayload

M = TypeVar("M", bound=BaseModel)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


@dataclass(frozen=True)
class Valid(Generic[M]):
    payload: M


@dataclass(frozen=True)
class Invalid:
    errors: List[FieldError] = field(default_factory=list)


ValidationResult = Union[Valid[M], Invalid]


def validate_payload(model: Type[M], data: Any) -> ValidationResult:
    if not isinstance(data, dict):
        return Invalid([FieldError("body", "Request body must be a JSON object")])
    try:
        return Valid(model.model_validate(data))
    except ValidationError as exc:
        return Invalid([_field_error(err) for err in exc.errors()])


def _field_error(err: dict) -> FieldError:
    # Union members add their type name to the location; keep field names only
    parts = [str(p) for p in err.get("loc", ()) if isinstance(p, (str, int))]
    name = parts[0] if parts else "body"
    return FieldError(field=name, message=err["msg"])


def validate_pageview(data: Any) -> ValidationResult:
    return validate_payload(PageviewPayload, data)


def validate_append(data: Any) -> ValidationResult:
    return validate_payload(AppendPayload, data)


def validate_event(data: Any) -> ValidationResult:
    return validate_payload(EventPayload, data)


def sanitize_path(path: str) -> str:
    """Strip ASCII control characters (0-31, 127)."""
    return _CONTROL_CHARS.sub("", path)
