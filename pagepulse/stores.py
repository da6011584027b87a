"""
Process-wide store handles, built once at startup and closed on shutdown.

FastAPI keeps the instance on ``app.state.stores``; request handlers
reach it through ``pagepulse.api.deps``. Tests construct their own.
"""

import secrets
from dataclasses import dataclass, field

import structlog
from redis import Redis
from sqlalchemy.engine import Engine

from pagepulse.core.config import Settings
from pagepulse.db import create_db_and_tables, create_db_engine
from pagepulse.services.active_visitors import ActiveVisitorStore
from pagepulse.services.geoip import GeoIPResolver, open_geoip_resolver
from pagepulse.services.sessions import SessionStore
from pagepulse.services.user_agent import UserAgentClassifier
from pagepulse.services.visitor_dedup import VisitorDeduplicator

logger = structlog.get_logger(__name__)


@dataclass
class Stores:
    engine: Engine
    redis: Redis
    geoip: GeoIPResolver
    visitor_hash_secret: str
    ua_classifier: UserAgentClassifier = field(default_factory=UserAgentClassifier)

    @property
    def deduplicator(self) -> VisitorDeduplicator:
        return VisitorDeduplicator(self.redis, self.visitor_hash_secret)

    @property
    def sessions(self) -> SessionStore:
        return SessionStore(self.redis)

    @property
    def active_visitors(self) -> ActiveVisitorStore:
        return ActiveVisitorStore(self.redis)

    @classmethod
    def open(cls, settings: Settings) -> "Stores":
        engine = create_db_engine(settings.DATABASE_URL, settings.DB_TRANSACTION_TIMEOUT_SECONDS)
        create_db_and_tables(engine)

        redis_client = Redis.from_url(
            settings.REDIS_URL,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            decode_responses=True,
        )

        secret = settings.VISITOR_HASH_SECRET
        if not secret:
            # Fingerprints from different processes won't match; uniques over-count
            logger.warning("VISITOR_HASH_SECRET not set, using a per-process random secret")
            secret = secrets.token_hex(32)

        return cls(
            engine=engine,
            redis=redis_client,
            geoip=open_geoip_resolver(settings.GEOIP_DATABASE_PATH),
            visitor_hash_secret=secret,
        )

    def close(self) -> None:
        for name, closer in (
            ("geoip", self.geoip.close),
            ("redis", self.redis.close),
            ("database", self.engine.dispose),
        ):
            try:
                closer()
            except Exception as e:
                logger.warning("Failed to close store", store=name, error=str(e))
