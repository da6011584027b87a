"""
Single-page-app navigation observer.

The host reports client-side route changes by calling ``notify()`` from its
router hook or popstate listener. Hosts with no hook can ``wrap()`` their
navigation function instead. Either way, tracking failures never reach
the navigation call.
"""

import functools
from typing import Callable, Optional, TypeVar

from pagepulse.core.logging_config import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable)


class NavigationObserver:
    def __init__(self):
        self._callback: Optional[Callable[[], None]] = None

    def subscribe(self, callback: Callable[[], None]) -> None:
        self._callback = callback

    def unsubscribe(self) -> None:
        self._callback = None

    def notify(self) -> None:
        callback = self._callback
        if callback is None:
            return
        try:
            callback()
        except Exception as e:
            logger.warning("Navigation callback failed", error=str(e))

    def wrap(self, navigate: F) -> F:
        """Decorate a history-changing function so each call notifies after it runs."""

        @functools.wraps(navigate)
        def wrapper(*args, **kwargs):
            result = navigate(*args, **kwargs)
            self.notify()
            return result

        return wrapper  # type: ignore[return-value]
