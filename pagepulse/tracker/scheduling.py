import threading
from typing import Callable, Optional, Protocol


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> Cancellable: ...


class ThreadingScheduler:
    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> Cancellable:
        timer = threading.Timer(delay_seconds, callback)
        timer.daemon = True
        timer.start()
        return timer


class Debouncer:
    """
    Runs ``func`` once, ``wait`` seconds after the last of a burst of calls.

    ``func`` runs on the scheduler's thread and may still start after
    ``cancel()`` returns; callers guard their own state.
    """

    def __init__(self, scheduler: Scheduler, wait: float, func: Callable[[], None]):
        self._scheduler = scheduler
        self._wait = wait
        self._func = func
        self._pending: Optional[Cancellable] = None
        self._lock = threading.Lock()

    def __call__(self) -> None:
        with self._lock:
            if self._pending is not None:
                self._pending.cancel()
            self._pending = self._scheduler.call_later(self._wait, self._fire)

    def cancel(self) -> None:
        with self._lock:
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None

    def _fire(self) -> None:
        with self._lock:
            self._pending = None
        self._func()
