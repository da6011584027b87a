"""
Tests for daily unique-visitor deduplication and session metadata.

Tests cover:
- First sighting per UTC day, rollover at midnight
- TTL aligned to the end of the UTC day
- Fail-safe degrade when the store is down
- Loud failure on empty identity inputs
- Session metadata create/touch
"""

from datetime import date, datetime, timezone

import pytest

from pagepulse.services.sessions import KEY_PREFIX as SESSION_PREFIX
from pagepulse.services.sessions import SESSION_TTL_SECONDS, SessionStore
from pagepulse.services.visitor_dedup import (
    KEY_PREFIX,
    VisitorDeduplicator,
    seconds_until_utc_midnight,
    visitor_fingerprint,
)

UA = "Mozilla/5.0 (X11; Linux x86_64) Firefox/121.0"
NOON = datetime(2025, 10, 29, 12, 0, tzinfo=timezone.utc)


class TestVisitorFingerprint:
    """Tests for the keyed fingerprint."""

    def test_deterministic(self):
        a = visitor_fingerprint("8.8.8.8", UA, date(2025, 10, 29), "secret")
        b = visitor_fingerprint("8.8.8.8", UA, date(2025, 10, 29), "secret")
        assert a == b
        assert len(a) == 64

    def test_depends_on_day_and_secret(self):
        base = visitor_fingerprint("8.8.8.8", UA, date(2025, 10, 29), "secret")
        assert visitor_fingerprint("8.8.8.8", UA, date(2025, 10, 30), "secret") != base
        assert visitor_fingerprint("8.8.8.8", UA, date(2025, 10, 29), "other") != base

    def test_does_not_contain_ip(self):
        assert "8.8.8.8" not in visitor_fingerprint("8.8.8.8", UA, date(2025, 10, 29), "secret")

    @pytest.mark.parametrize("ip,ua", [("", UA), ("   ", UA), ("8.8.8.8", ""), ("8.8.8.8", "  ")])
    def test_empty_inputs_raise(self, ip, ua):
        with pytest.raises(ValueError):
            visitor_fingerprint(ip, ua, date(2025, 10, 29), "secret")


class TestSecondsUntilMidnight:
    """Tests for TTL calculation."""

    def test_noon(self):
        assert seconds_until_utc_midnight(NOON) == 12 * 3600

    def test_just_before_midnight(self):
        assert seconds_until_utc_midnight(datetime(2025, 10, 29, 23, 59, 30, tzinfo=timezone.utc)) == 30

    def test_never_zero(self):
        assert seconds_until_utc_midnight(datetime(2025, 10, 29, 23, 59, 59, 999999, tzinfo=timezone.utc)) == 1

    def test_non_utc_input_converted(self):
        from datetime import timedelta

        plus_two = timezone(timedelta(hours=2))
        # 01:00 at +02:00 is 23:00 UTC the previous day
        assert seconds_until_utc_midnight(datetime(2025, 10, 30, 1, 0, tzinfo=plus_two)) == 3600


class TestVisitorDeduplicator:
    """Tests for is_first_visit_today."""

    @pytest.fixture
    def dedup(self, fake_redis):
        return VisitorDeduplicator(fake_redis, "test-secret")

    def test_first_then_repeat_same_day(self, dedup):
        assert dedup.is_first_visit_today("8.8.8.8", UA, now=NOON) is True
        assert dedup.is_first_visit_today("8.8.8.8", UA, now=NOON.replace(hour=18)) is False

    def test_unique_again_next_day(self, dedup):
        assert dedup.is_first_visit_today("8.8.8.8", UA, now=NOON) is True
        assert dedup.is_first_visit_today("8.8.8.8", UA, now=NOON.replace(day=30)) is True

    def test_different_user_agent_is_different_visitor(self, dedup):
        assert dedup.is_first_visit_today("8.8.8.8", UA, now=NOON) is True
        assert dedup.is_first_visit_today("8.8.8.8", UA + " extra", now=NOON) is True

    def test_key_and_ttl(self, dedup, fake_redis):
        dedup.is_first_visit_today("8.8.8.8", UA, now=NOON)
        (key,) = fake_redis.store.keys()
        assert key.startswith(KEY_PREFIX)
        assert "8.8.8.8" not in key
        assert fake_redis.ttls[key] == 12 * 3600

    def test_store_failure_degrades_to_not_unique(self, dedup, fake_redis):
        fake_redis.fail = True
        assert dedup.is_first_visit_today("8.8.8.8", UA, now=NOON) is False

    def test_empty_ip_raises(self, dedup):
        with pytest.raises(ValueError):
            dedup.is_first_visit_today("", UA, now=NOON)


class TestSessionStore:
    """Tests for session metadata."""

    def test_create_then_touch(self, fake_redis):
        store = SessionStore(fake_redis)
        created = store.get_or_create("s1", referrer="https://google.com/", utm={"utm_source": "news", "utm_term": ""})
        assert created.page_count == 1
        assert created.utm_params == {"utm_source": "news"}
        assert fake_redis.ttls[f"{SESSION_PREFIX}s1"] == SESSION_TTL_SECONDS

        again = store.get_or_create("s1", referrer="https://bing.com/")
        assert again.page_count == 2
        assert again.initial_referrer == "https://google.com/"

    def test_touch_unknown_session(self, fake_redis):
        assert SessionStore(fake_redis).touch("missing") is None

    def test_store_failure_returns_none(self, fake_redis):
        fake_redis.fail = True
        store = SessionStore(fake_redis)
        assert store.get_or_create("s1") is None
        assert store.get("s1") is None
