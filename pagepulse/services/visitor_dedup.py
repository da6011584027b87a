"""
Daily unique-visitor deduplication.

A visitor is identified by HMAC-SHA256(secret, "ip|user_agent|YYYY-MM-DD").
The digest is one-way and keyed, so the store never holds anything that
can be reversed to an address, and the date component makes the
fingerprint roll over at UTC midnight. Keys expire at that same midnight.

Store writes use SET NX EX, so exactly one of several concurrent requests
for the same fingerprint observes "first visit".
"""

import hashlib
import hmac
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import structlog
from redis import Redis

from pagepulse.models.types import as_utc

logger = structlog.get_logger(__name__)

KEY_PREFIX = "visitor:hash:"


def visitor_fingerprint(ip: str, user_agent: str, day: date, secret: str) -> str:
    """
    Keyed hash of a visitor for one UTC day (64 hex chars).

    Raises:
        ValueError: ip or user_agent is empty. Hashing an empty value would
            fold every such request into one visitor.
    """
    if not ip or not ip.strip():
        raise ValueError("IP address is required and cannot be empty")
    if not user_agent or not user_agent.strip():
        raise ValueError("User agent is required and cannot be empty")

    message = f"{ip}|{user_agent}|{day.isoformat()}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def seconds_until_utc_midnight(now: datetime) -> int:
    """Whole seconds left in the current UTC day, never less than 1."""
    now = as_utc(now)
    next_midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)
    remaining = int((next_midnight - now).total_seconds())
    return max(1, remaining)


class VisitorDeduplicator:
    def __init__(self, redis_client: Redis, secret: str):
        self._redis = redis_client
        self._secret = secret

    def fingerprint(self, ip: str, user_agent: str, now: Optional[datetime] = None) -> str:
        """Today's fingerprint for the visitor, keyed with this deduplicator's secret."""
        now = as_utc(now or datetime.now(timezone.utc))
        return visitor_fingerprint(ip, user_agent, now.date(), self._secret)

    def is_first_visit_today(self, ip: str, user_agent: str, now: Optional[datetime] = None) -> bool:
        """
        Record the visitor for today and report whether this was the first sighting.

        The day is taken from the server clock, never from the client's
        timestamp. If the store is unreachable the visit is counted as a
        repeat: losing a unique is preferable to inflating the count.
        """
        now = as_utc(now or datetime.now(timezone.utc))
        fingerprint = self.fingerprint(ip, user_agent, now)

        try:
            created = self._redis.set(
                f"{KEY_PREFIX}{fingerprint}",
                "1",
                nx=True,
                ex=seconds_until_utc_midnight(now),
            )
        except Exception as e:
            logger.warning("Visitor dedup store unavailable, counting as repeat", error=str(e))
            return False

        return bool(created)
