"""
Retention sweeper: batch-deletes pageviews older than the retention window.

Batches walk the table in primary-key order. Each batch picks the next
``batch_size`` expired ids after the last one seen and deletes that id
range in its own transaction, so a failed batch is skipped rather than
retried forever.

Error policy:
- connection-class failures (refused, unresolvable, timed out, closed)
  abort the run; batches already committed stay deleted
- anything else is recorded against the batch and the sweep moves on
"""

import calendar
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from pagepulse.core.db_utils import is_connection_error
from pagepulse.core.errors import capture_exception
from pagepulse.models import Pageview
from pagepulse.models.types import as_utc

logger = structlog.get_logger(__name__)

BATCH_SIZE = 10_000


def subtract_months(moment: datetime, months: int) -> datetime:
    """
    Calendar-aware month subtraction, clamping to the last day of the target month.

    2025-03-31 minus 1 month -> 2025-02-28
    """
    month_index = moment.month - 1 - months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def retention_cutoff(months: int, now: Optional[datetime] = None) -> datetime:
    """Oldest added_iso that survives, in UTC."""
    return subtract_months(as_utc(now or datetime.now(timezone.utc)), months)


@dataclass
class SweepResult:
    cutoff: datetime
    start_time: datetime
    end_time: Optional[datetime] = None
    total_deleted: int = 0
    batches_processed: int = 0
    duration_ms: int = 0
    aborted: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_deleted": self.total_deleted,
            "batches_processed": self.batches_processed,
            "duration_ms": self.duration_ms,
            "errors": list(self.errors),
            "aborted": self.aborted,
            "cutoff": self.cutoff.isoformat(),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


class SweepAborted(Exception):
    pass


class RetentionSweeper:
    def __init__(
        self,
        engine: Engine,
        retention_months: int,
        batch_size: int = BATCH_SIZE,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.engine = engine
        self.retention_months = retention_months
        self.batch_size = batch_size
        self.clock = clock

    def run(self) -> SweepResult:
        started = time.monotonic()
        now = self.clock()
        result = SweepResult(cutoff=retention_cutoff(self.retention_months, now), start_time=now)

        logger.info(
            "Retention sweep started",
            retention_months=self.retention_months,
            cutoff=result.cutoff.isoformat(),
            batch_size=self.batch_size,
        )

        try:
            self._sweep(result)
        except SweepAborted:
            result.aborted = True
        finally:
            result.end_time = self.clock()
            result.duration_ms = int((time.monotonic() - started) * 1000)

        log = logger.warning if result.errors else logger.info
        log(
            "Retention sweep finished",
            total_deleted=result.total_deleted,
            batches_processed=result.batches_processed,
            duration_ms=result.duration_ms,
            error_count=len(result.errors),
            aborted=result.aborted,
        )
        return result

    def _sweep(self, result: SweepResult) -> None:
        after_id = 0
        while True:
            batch_number = result.batches_processed + 1

            try:
                ids = self._next_batch_ids(result.cutoff, after_id)
            except Exception as e:
                # Without the next ids there is no batch to skip to
                self._record_failure(result, batch_number, e)
                raise SweepAborted() from e

            if not ids:
                return

            try:
                deleted = self._delete_range(result.cutoff, ids[0], ids[-1])
            except Exception as e:
                self._record_failure(result, batch_number, e)
                deleted = 0

            result.batches_processed += 1
            result.total_deleted += deleted
            after_id = ids[-1]
            logger.info(
                "Retention batch processed",
                batch=batch_number,
                deleted=deleted,
                total_deleted=result.total_deleted,
            )

            if len(ids) < self.batch_size:
                return

    def _next_batch_ids(self, cutoff: datetime, after_id: int) -> List[int]:
        with Session(self.engine) as db:
            statement = (
                select(Pageview.id)
                .where(Pageview.added_iso < cutoff, Pageview.id > after_id)
                .order_by(Pageview.id)
                .limit(self.batch_size)
            )
            return list(db.exec(statement).all())

    def _delete_range(self, cutoff: datetime, first_id: int, last_id: int) -> int:
        # The cutoff filter keeps rows inside the id range that are still in retention
        with Session(self.engine) as db:
            statement = delete(Pageview).where(
                Pageview.id >= first_id,
                Pageview.id <= last_id,
                Pageview.added_iso < cutoff,
            )
            deleted = db.execute(statement).rowcount
            db.commit()
            return deleted

    def _record_failure(self, result: SweepResult, batch_number: int, error: Exception) -> None:
        message = f"Batch {batch_number}: {error}"
        result.errors.append(message)

        if is_connection_error(error):
            logger.error("Retention sweep aborted on connection error", batch=batch_number, error=str(error))
            capture_exception(error, context={"batch": batch_number, "job": "retention_sweep"})
            raise SweepAborted() from error

        logger.warning("Retention batch failed, continuing", batch=batch_number, error=str(error))
