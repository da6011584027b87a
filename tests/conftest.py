"""
Test fixtures for pagepulse tests.

Provides an in-memory database, an in-memory stand-in for the Redis
commands the services use, and a TestClient wired to both.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")

from typing import Any, Callable, Dict, Generator, Optional

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import pagepulse.models  # noqa: F401  (registers tables)
from pagepulse.api.deps import get_stores
from pagepulse.main import app
from pagepulse.stores import Stores
from pagepulse.tracker.ids import generate_page_id

# Use in-memory SQLite for unit tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"

CHROME_DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.109 Safari/537.36"
)


class FakeRedis:
    """Implements only the commands pagepulse issues. Set ``fail`` to simulate an outage."""

    def __init__(self):
        self.store: Dict[str, Any] = {}
        self.ttls: Dict[str, int] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    def set(self, key: str, value: Any, nx: bool = False, ex: Optional[int] = None):
        self._check()
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def get(self, key: str):
        self._check()
        return self.store.get(key)

    def setex(self, key: str, ttl: int, value: Any):
        self._check()
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def zadd(self, key: str, mapping: Dict[str, float]):
        self._check()
        members = self.store.setdefault(key, {})
        added = sum(1 for member in mapping if member not in members)
        members.update(mapping)
        return added

    def zremrangebyscore(self, key: str, low, high):
        self._check()
        members = self.store.get(key, {})
        doomed = [m for m, score in members.items() if float(low) <= score <= float(high)]
        for member in doomed:
            del members[member]
        return len(doomed)

    def zcount(self, key: str, low, high):
        self._check()
        return sum(1 for score in self.store.get(key, {}).values() if float(low) <= score <= float(high))

    def expire(self, key: str, ttl: int):
        self._check()
        if key not in self.store:
            return False
        self.ttls[key] = ttl
        return True

    def ping(self) -> bool:
        self._check()
        return True

    def close(self) -> None:
        pass


class StubGeoIP:
    def __init__(self, countries: Optional[Dict[str, str]] = None):
        self.countries = countries or {}
        self.lookups = []

    def lookup_country(self, ip: str) -> Optional[str]:
        self.lookups.append(ip)
        return self.countries.get(ip)

    def close(self) -> None:
        pass


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def geoip() -> StubGeoIP:
    return StubGeoIP({"8.8.8.8": "US", "81.2.69.142": "GB"})


@pytest.fixture
def stores(test_engine, fake_redis, geoip) -> Stores:
    return Stores(
        engine=test_engine,
        redis=fake_redis,
        geoip=geoip,
        visitor_hash_secret="test-secret",
    )


@pytest.fixture
def client(stores) -> Generator[TestClient, None, None]:
    """TestClient with stores overridden (lifespan is not run)."""
    app.dependency_overrides[get_stores] = lambda: stores
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def pageview_payload() -> Callable[..., Dict[str, Any]]:
    """Factory for a valid create payload; keyword overrides replace fields."""

    def _make(**overrides) -> Dict[str, Any]:
        payload = {
            "page_id": generate_page_id(),
            "added_iso": "2025-10-29T12:00:00.000Z",
            "session_id": "5f0c6f0e-6d2a-4c1e-9a53-2f1b7f0c9d11",
            "hostname": "example.com",
            "path": "/pricing",
            "hash": "",
            "query_string": "utm_source=newsletter",
            "document_title": "Pricing",
            "document_referrer": "https://www.google.com/search?q=pagepulse",
            "device_type": "desktop",
            "viewport_width": 1440,
            "viewport_height": 900,
            "screen_width": 2560,
            "screen_height": 1440,
            "language": "en-US",
            "timezone": "Europe/Berlin",
            "user_agent": CHROME_DESKTOP_UA,
            "utm_source": "newsletter",
            "duration_seconds": 0,
            "visibility_changes": 0,
            "is_internal_referrer": False,
        }
        payload.update(overrides)
        return payload

    return _make
