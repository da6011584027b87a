"""
Request context management for log correlation.

Uses contextvars for async-safe propagation of the request id that
RequestContextMiddleware assigns to every request.
"""

from contextvars import ContextVar
from typing import Optional
import uuid

__all__ = [
    "set_request_id",
    "get_request_id",
    "generate_request_id",
    "clear_context",
    "get_context_dict",
]

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def generate_request_id() -> str:
    """
    Generate a new request ID.

    Format: req_{16 hex chars}
    """
    return f"req_{uuid.uuid4().hex[:16]}"


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def clear_context() -> None:
    """Called at end of request to prevent context leaking."""
    _request_id.set(None)


def get_context_dict() -> dict:
    return {"request_id": get_request_id()}
