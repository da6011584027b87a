"""
Identifier generation for the page tracker.

page_id is collision-resistant and cuid-shaped: "c" followed by 24
lowercase base-36 characters (a millisecond timestamp prefix, then random
padding). The same pattern is enforced on the ingestion side.
"""

import secrets
import string
import time
import uuid
from typing import Optional

PAGE_ID_PATTERN = r"^c[a-z0-9]{24}$"
PAGE_ID_LENGTH = 25

_ALPHABET = string.digits + string.ascii_lowercase


def to_base36(number: int) -> str:
    if number < 0:
        raise ValueError("number must be non-negative")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_page_id(now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    body = to_base36(now_ms)[-(PAGE_ID_LENGTH - 1):]
    padding = "".join(secrets.choice(_ALPHABET) for _ in range(PAGE_ID_LENGTH - 1 - len(body)))
    return f"c{body}{padding}"


def generate_session_id() -> str:
    return str(uuid.uuid4())
