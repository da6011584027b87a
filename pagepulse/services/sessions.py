"""
Short-lived session metadata kept next to the dedup keys.

Each session_id maps to a small JSON document under ``session:<id>`` with
a sliding 24h TTL. Nothing here is authoritative: pageviews carry their
own session_id, and a store outage just means no metadata.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

import structlog
from pydantic import BaseModel, Field
from redis import Redis

logger = structlog.get_logger(__name__)

SESSION_TTL_SECONDS = 24 * 60 * 60
KEY_PREFIX = "session:"


class SessionMetadata(BaseModel):
    start_time: datetime
    last_seen: datetime
    page_count: int = 1
    initial_referrer: Optional[str] = None
    utm_params: Dict[str, str] = Field(default_factory=dict)


class SessionStore:
    def __init__(self, redis_client: Redis, ttl_seconds: int = SESSION_TTL_SECONDS):
        self._redis = redis_client
        self._ttl = ttl_seconds

    def get(self, session_id: str) -> Optional[SessionMetadata]:
        try:
            raw = self._redis.get(f"{KEY_PREFIX}{session_id}")
        except Exception as e:
            logger.warning("Session store unavailable", error=str(e))
            return None
        if raw is None:
            return None
        try:
            return SessionMetadata.model_validate_json(raw)
        except ValueError:
            logger.warning("Discarding unreadable session metadata", session_id=session_id)
            return None

    def get_or_create(
        self,
        session_id: str,
        referrer: Optional[str] = None,
        utm: Optional[Dict[str, str]] = None,
    ) -> Optional[SessionMetadata]:
        """
        Create the session on its first pageview, otherwise count another page.

        The first-pageview write is SET NX so the initial referrer of a
        session is never replaced by a racing second pageview.
        """
        now = datetime.now(timezone.utc)
        fresh = SessionMetadata(
            start_time=now,
            last_seen=now,
            initial_referrer=referrer or None,
            utm_params={k: v for k, v in (utm or {}).items() if v},
        )
        try:
            created = self._redis.set(
                f"{KEY_PREFIX}{session_id}",
                fresh.model_dump_json(),
                nx=True,
                ex=self._ttl,
            )
        except Exception as e:
            logger.warning("Session store unavailable", error=str(e))
            return None

        if created:
            return fresh
        return self.touch(session_id)

    def touch(self, session_id: str) -> Optional[SessionMetadata]:
        """Increment page_count and push the expiry out another TTL."""
        metadata = self.get(session_id)
        if metadata is None:
            return None

        metadata.page_count += 1
        metadata.last_seen = datetime.now(timezone.utc)
        try:
            self._redis.setex(f"{KEY_PREFIX}{session_id}", self._ttl, metadata.model_dump_json())
        except Exception as e:
            logger.warning("Session store unavailable", error=str(e))
            return None
        return metadata
