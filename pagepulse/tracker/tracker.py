"""
Client-side page tracker.

One ``PageTracker`` per tab. It moves INIT -> ACTIVE -> CLOSED:

- ``start()`` emits the first pageview (unless Do-Not-Track is set)
- ``on_scroll()`` is called for every scroll event; samples are debounced
- the navigation observer reports in-app route changes
- ``on_page_hide()`` sends the final engagement update

Scroll samples run on the scheduler's thread, so every state change
happens under one re-entrant lock.

Nothing here raises into the host page.
"""

import math
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set
from urllib.parse import parse_qsl

from pagepulse.core.logging_config import get_logger
from pagepulse.tracker.delivery import Dispatcher
from pagepulse.tracker.environment import PageEnvironment, ScrollMetrics
from pagepulse.tracker.ids import generate_page_id, generate_session_id
from pagepulse.tracker.navigation import NavigationObserver
from pagepulse.tracker.scheduling import Debouncer, Scheduler, ThreadingScheduler

logger = get_logger(__name__)

SCROLL_MILESTONES = (25, 50, 75, 100)
SCROLL_DEBOUNCE_SECONDS = 0.25
SESSION_STORAGE_KEY = "pagepulse_session_id"
UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term")

MOBILE_MAX_WIDTH = 768
TABLET_MAX_WIDTH = 1024


class TrackerState(str, Enum):
    INIT = "init"
    ACTIVE = "active"
    CLOSED = "closed"


def device_type_for_width(width: int) -> str:
    if width < MOBILE_MAX_WIDTH:
        return "mobile"
    if width <= TABLET_MAX_WIDTH:
        return "tablet"
    return "desktop"


def scroll_depth(metrics: ScrollMetrics) -> int:
    """Percentage of the document seen so far; 100 when it does not scroll."""
    if metrics.scroll_height <= 0 or metrics.scroll_height <= metrics.client_height:
        return 100
    seen = (metrics.scroll_top + metrics.client_height) / metrics.scroll_height * 100
    # Round half up
    return min(100, int(math.floor(seen + 0.5)))


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class PageTracker:
    def __init__(
        self,
        page: PageEnvironment,
        dispatcher: Dispatcher,
        endpoint: str,
        navigation: Optional[NavigationObserver] = None,
        scheduler: Optional[Scheduler] = None,
        monotonic: Callable[[], float] = time.monotonic,
        respect_do_not_track: bool = True,
    ):
        """
        Args:
            endpoint: Base tracking URL, e.g. "https://stats.example.com/api/track".
                Appends go to "<endpoint>/append", custom events to "<endpoint>/event".
        """
        self.page = page
        self.dispatcher = dispatcher
        self.endpoint = endpoint.rstrip("/")
        self.navigation = navigation or NavigationObserver()
        self.monotonic = monotonic
        self.respect_do_not_track = respect_do_not_track

        self.state = TrackerState.INIT
        self.session_id: Optional[str] = None
        self.page_id: Optional[str] = None
        self.path: Optional[str] = None
        self.milestones: Set[int] = set()
        self.max_scroll_depth: Optional[int] = None
        self.visibility_changes = 0
        self._started_at = 0.0
        self._referrer: str = ""
        self._page_url: str = ""
        self._internal_referrer = False
        self._scroll_page_id: Optional[str] = None
        self._lock = threading.RLock()
        self._scroll_debouncer = Debouncer(
            scheduler or ThreadingScheduler(), SCROLL_DEBOUNCE_SECONDS, self._sample_scroll
        )

    # -- lifecycle -------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self.state is not TrackerState.INIT:
                return
            if self.respect_do_not_track and self.page.do_not_track:
                logger.info("Do-Not-Track enabled, tracking disabled")
                return

            self.session_id = self._read_or_create_session_id()
            self._begin_page(referrer=self.page.document_referrer(), internal=False)
            self.navigation.subscribe(self.on_navigation)
            self.state = TrackerState.ACTIVE
            self._send_pageview()

    def on_scroll(self) -> None:
        with self._lock:
            if self.state is TrackerState.ACTIVE:
                self._scroll_page_id = self.page_id
                self._scroll_debouncer()

    def on_visibility_change(self) -> None:
        with self._lock:
            if self.state is TrackerState.ACTIVE:
                self.visibility_changes += 1

    def on_navigation(self) -> None:
        with self._lock:
            if self.state is not TrackerState.ACTIVE:
                return
            location = self.page.location()
            if location.pathname == self.path:
                return

            self._scroll_debouncer.cancel()
            self._measure_scroll()
            self._send_engagement()
            self._begin_page(referrer=self._page_url, internal=True)
            self._send_pageview()

    def on_page_hide(self) -> None:
        with self._lock:
            if self.state is not TrackerState.ACTIVE:
                return
            self._scroll_debouncer.cancel()
            self._measure_scroll()
            self._send_engagement()
            self.navigation.unsubscribe()
            self.state = TrackerState.CLOSED

    def track_event(self, event_name: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            if self.state is not TrackerState.ACTIVE:
                return
            payload: Dict[str, Any] = {
                "event_name": event_name,
                "page_id": self.page_id,
                "session_id": self.session_id,
                "path": self.path,
                "timestamp": utc_timestamp(),
            }
            if metadata:
                payload["event_metadata"] = metadata
            self.dispatcher.deliver(f"{self.endpoint}/event", payload)

    # -- internals -------------------------------------------------------

    @property
    def duration_seconds(self) -> int:
        return max(0, int(self.monotonic() - self._started_at))

    @property
    def _current_url(self) -> str:
        location = self.page.location()
        return location.href or f"https://{location.hostname}{location.pathname}"

    def _read_or_create_session_id(self) -> str:
        storage = self.page.session_storage
        try:
            existing = storage.get_item(SESSION_STORAGE_KEY)
            if existing:
                return existing
            session_id = generate_session_id()
            storage.set_item(SESSION_STORAGE_KEY, session_id)
            return session_id
        except Exception as e:
            logger.debug("Session storage unavailable, using a fresh session id", error=str(e))
            return generate_session_id()

    def _begin_page(self, referrer: str, internal: bool) -> None:
        self.page_id = generate_page_id()
        self.path = self.page.location().pathname
        self.milestones = set()
        self.max_scroll_depth = None
        self.visibility_changes = 0
        self._started_at = self.monotonic()
        self._referrer = referrer
        self._internal_referrer = internal
        self._page_url = self._current_url

    def _measure_scroll(self) -> Optional[int]:
        try:
            depth = scroll_depth(self.page.scroll_metrics())
        except Exception as e:
            logger.debug("Scroll sample failed", error=str(e))
            return None
        self.max_scroll_depth = max(depth, self.max_scroll_depth or 0)
        return depth

    def _sample_scroll(self) -> None:
        with self._lock:
            # Dropped once the page it was scheduled for is gone
            if self.state is not TrackerState.ACTIVE or self._scroll_page_id != self.page_id:
                return
            depth = self._measure_scroll()
            if depth is None:
                return

            for milestone in SCROLL_MILESTONES:
                if depth >= milestone and milestone not in self.milestones:
                    self.milestones.add(milestone)
                    self._send_engagement(scrolled_percentage=depth)
                    self.track_event(f"scroll_{milestone}", {"percentage": milestone})

    def _send_pageview(self) -> None:
        location = self.page.location()
        viewport_width, viewport_height = self.page.viewport()
        screen = self.page.screen()
        utm = {k: v for k, v in parse_qsl(location.search.lstrip("?")) if k in UTM_KEYS}

        payload: Dict[str, Any] = {
            "page_id": self.page_id,
            "session_id": self.session_id,
            "added_iso": utc_timestamp(),
            "hostname": location.hostname,
            "path": location.pathname,
            "hash": location.hash,
            "query_string": location.search.lstrip("?"),
            "document_title": self.page.document_title(),
            "document_referrer": self._referrer,
            "is_internal_referrer": self._internal_referrer,
            "device_type": device_type_for_width(viewport_width),
            "viewport_width": viewport_width,
            "viewport_height": viewport_height,
            "screen_width": screen[0] if screen else None,
            "screen_height": screen[1] if screen else None,
            "language": self.page.language,
            "timezone": self.page.timezone,
            "user_agent": self.page.user_agent,
            "duration_seconds": 0,
            "visibility_changes": self.visibility_changes,
            **utm,
        }
        payload = {k: v for k, v in payload.items() if v is not None and v != ""}
        payload.setdefault("user_agent", "")
        self.dispatcher.deliver(self.endpoint, payload)

    def _send_engagement(self, scrolled_percentage: Optional[int] = None) -> None:
        if scrolled_percentage is None:
            scrolled_percentage = self.max_scroll_depth
        payload: Dict[str, Any] = {
            "page_id": self.page_id,
            "duration_seconds": self.duration_seconds,
        }
        if scrolled_percentage is not None:
            payload["scrolled_percentage"] = scrolled_percentage
        self.dispatcher.deliver(f"{self.endpoint}/append", payload)
