"""
Visitors seen in the last few minutes.

One sorted set, ``active_visitors``, holds visitor fingerprints scored by
the unix time they were last seen. Entries older than the window are
pruned on every write and before every count. Like the session store this
is best effort: an outage loses the live count, never a pageview.
"""

import time
from typing import Callable, Optional

import structlog
from redis import Redis

logger = structlog.get_logger(__name__)

ACTIVE_WINDOW_SECONDS = 5 * 60
ACTIVE_VISITORS_KEY = "active_visitors"


class ActiveVisitorStore:
    def __init__(
        self,
        redis_client: Redis,
        window_seconds: int = ACTIVE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis_client
        self._window = window_seconds
        self._clock = clock

    def record(self, fingerprint: str) -> bool:
        """Mark the visitor as seen now. False if the store could not be written."""
        now = int(self._clock())
        try:
            self._redis.zadd(ACTIVE_VISITORS_KEY, {fingerprint: now})
            self._redis.zremrangebyscore(ACTIVE_VISITORS_KEY, "-inf", now - self._window)
            self._redis.expire(ACTIVE_VISITORS_KEY, self._window)
        except Exception as e:
            logger.warning("Active visitor store unavailable", error=str(e))
            return False
        return True

    def count(self) -> Optional[int]:
        """Distinct visitors inside the window, or None when the store is down."""
        threshold = int(self._clock()) - self._window
        try:
            self._redis.zremrangebyscore(ACTIVE_VISITORS_KEY, "-inf", threshold)
            return int(self._redis.zcount(ACTIVE_VISITORS_KEY, threshold, "+inf"))
        except Exception as e:
            logger.warning("Active visitor store unavailable", error=str(e))
            return None
