"""
Tests for the retention sweeper.

Tests cover:
- Calendar-aware cutoff calculation
- Deleting only records strictly older than the cutoff
- Batching and batch accounting
- Abort on connection-class errors with partial progress kept
- Skipping past other per-batch errors
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from pagepulse.models import Pageview
from pagepulse.services.retention import RetentionSweeper, retention_cutoff, subtract_months
from pagepulse.tracker.ids import generate_page_id

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)
CUTOFF = datetime(2023, 6, 15, 12, 0, tzinfo=timezone.utc)


def _add_pageviews(engine, added: datetime, count: int, path: str = "/") -> None:
    with Session(engine) as session:
        for _ in range(count):
            session.add(
                Pageview(
                    page_id=generate_page_id(),
                    added_iso=added,
                    added_day=added.date(),
                    path=path,
                    device_type="desktop",
                )
            )
        session.commit()


def _remaining(engine) -> list:
    with Session(engine) as session:
        return session.exec(select(Pageview).order_by(Pageview.id)).all()


def _sweeper(engine, batch_size: int = 2) -> RetentionSweeper:
    return RetentionSweeper(engine, retention_months=24, batch_size=batch_size, clock=lambda: NOW)


class TestCutoff:
    """Tests for month arithmetic."""

    @pytest.mark.parametrize("moment,months,expected", [
        (datetime(2025, 3, 31), 1, datetime(2025, 2, 28)),
        (datetime(2024, 3, 31), 1, datetime(2024, 2, 29)),
        (datetime(2025, 1, 15), 1, datetime(2024, 12, 15)),
        (datetime(2025, 6, 15, 12), 24, datetime(2023, 6, 15, 12)),
        (datetime(2025, 12, 31), 12, datetime(2024, 12, 31)),
    ])
    def test_subtract_months(self, moment, months, expected):
        assert subtract_months(moment, months) == expected

    def test_cutoff_is_utc(self):
        plus_two = timezone(timedelta(hours=2))
        cutoff = retention_cutoff(1, now=datetime(2025, 6, 1, 1, 0, tzinfo=plus_two))
        assert cutoff == datetime(2025, 4, 30, 23, 0, tzinfo=timezone.utc)
        assert cutoff.tzinfo is timezone.utc


class TestRetentionSweeper:
    """Tests for RetentionSweeper.run."""

    def test_deletes_only_strictly_older(self, test_engine):
        """A row stamped exactly at the cutoff survives."""
        _add_pageviews(test_engine, CUTOFF - timedelta(minutes=1), 3)
        _add_pageviews(test_engine, CUTOFF, 1)
        _add_pageviews(test_engine, CUTOFF + timedelta(days=1), 2)

        result = _sweeper(test_engine, batch_size=10).run()

        assert result.total_deleted == 3
        assert result.cutoff == CUTOFF
        assert all(p.added_iso >= CUTOFF for p in _remaining(test_engine))
        assert len(_remaining(test_engine)) == 3

    def test_batches_until_short_batch(self, test_engine):
        _add_pageviews(test_engine, CUTOFF - timedelta(days=30), 5)

        result = _sweeper(test_engine, batch_size=2).run()

        assert result.total_deleted == 5
        assert result.batches_processed == 3
        assert result.errors == []
        assert result.aborted is False
        assert _remaining(test_engine) == []

    def test_nothing_to_delete(self, test_engine):
        _add_pageviews(test_engine, CUTOFF + timedelta(days=1), 2)

        result = _sweeper(test_engine).run()

        assert result.total_deleted == 0
        assert result.batches_processed == 0
        assert result.end_time is not None
        assert result.duration_ms >= 0

    def test_exact_multiple_of_batch_size(self, test_engine):
        _add_pageviews(test_engine, CUTOFF - timedelta(days=1), 4)

        result = _sweeper(test_engine, batch_size=2).run()

        assert result.total_deleted == 4
        assert result.batches_processed == 2

    def test_keeps_in_retention_rows_interleaved_by_id(self, test_engine):
        old = CUTOFF - timedelta(days=1)
        new = CUTOFF + timedelta(days=1)
        _add_pageviews(test_engine, old, 1, path="/a")
        _add_pageviews(test_engine, new, 1, path="/b")
        _add_pageviews(test_engine, old, 1, path="/c")

        result = _sweeper(test_engine, batch_size=2).run()

        assert result.total_deleted == 2
        assert [p.path for p in _remaining(test_engine)] == ["/b"]

    def test_connection_error_aborts_and_keeps_progress(self, test_engine):
        """Should stop at the failing batch and keep what earlier batches deleted."""
        _add_pageviews(test_engine, CUTOFF - timedelta(days=1), 6)
        sweeper = _sweeper(test_engine, batch_size=2)
        original = sweeper._delete_range
        calls = []

        def flaky(cutoff, first_id, last_id):
            calls.append((first_id, last_id))
            if len(calls) == 2:
                raise OperationalError(
                    "DELETE FROM pageviews", {}, Exception("could not connect to server: Connection refused")
                )
            return original(cutoff, first_id, last_id)

        with patch.object(sweeper, "_delete_range", side_effect=flaky):
            result = sweeper.run()

        assert result.aborted is True
        assert result.total_deleted == 2
        assert len(calls) == 2  # batch 3 never attempted
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Batch 2:")
        assert len(_remaining(test_engine)) == 4

    def test_other_errors_skip_the_batch(self, test_engine):
        """Should record a non-connection failure and carry on with the next batch."""
        _add_pageviews(test_engine, CUTOFF - timedelta(days=1), 6)
        sweeper = _sweeper(test_engine, batch_size=2)
        original = sweeper._delete_range
        calls = []

        def flaky(cutoff, first_id, last_id):
            calls.append((first_id, last_id))
            if len(calls) == 2:
                raise ValueError("constraint check failed")
            return original(cutoff, first_id, last_id)

        with patch.object(sweeper, "_delete_range", side_effect=flaky):
            result = sweeper.run()

        assert result.aborted is False
        assert result.total_deleted == 4
        assert result.batches_processed == 3
        assert result.errors == ["Batch 2: constraint check failed"]
        # The skipped batch is left for the next run
        assert len(_remaining(test_engine)) == 2

    def test_select_failure_ends_run(self, test_engine):
        _add_pageviews(test_engine, CUTOFF - timedelta(days=1), 2)
        sweeper = _sweeper(test_engine)

        with patch.object(sweeper, "_next_batch_ids", side_effect=RuntimeError("syntax error")):
            result = sweeper.run()

        assert result.aborted is True
        assert result.total_deleted == 0
        assert len(result.errors) == 1

    def test_to_dict(self, test_engine):
        result = _sweeper(test_engine).run()
        summary = result.to_dict()
        assert set(summary) >= {"total_deleted", "batches_processed", "duration_ms", "errors", "cutoff"}
        assert summary["cutoff"] == CUTOFF.isoformat()

    def test_rejects_non_positive_batch_size(self, test_engine):
        with pytest.raises(ValueError):
            RetentionSweeper(test_engine, 24, batch_size=0)


def test_added_day_matches_added_iso(test_engine):
    _add_pageviews(test_engine, datetime(2025, 1, 2, 23, 59), 1)
    assert _remaining(test_engine)[0].added_day == date(2025, 1, 2)
