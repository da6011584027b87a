"""
What the tracker needs from the page it runs in.

The host (a browser bridge, a headless renderer, a test) implements
``PageEnvironment``; the tracker never reaches for globals.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Tuple


@dataclass(frozen=True)
class Location:
    hostname: str
    pathname: str
    search: str = ""
    hash: str = ""
    href: str = ""


@dataclass(frozen=True)
class ScrollMetrics:
    scroll_top: float
    client_height: float
    scroll_height: float


class KeyValueStorage(Protocol):
    """Per-tab storage (sessionStorage). Either method may raise when disabled."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...


class PageEnvironment(Protocol):
    session_storage: KeyValueStorage
    user_agent: str
    language: Optional[str]
    timezone: Optional[str]
    do_not_track: bool

    def location(self) -> Location: ...

    def document_title(self) -> str: ...

    def document_referrer(self) -> str: ...

    def viewport(self) -> Tuple[int, int]: ...

    def screen(self) -> Optional[Tuple[int, int]]: ...

    def scroll_metrics(self) -> ScrollMetrics: ...
