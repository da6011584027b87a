from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.engine import Engine

from pagepulse.core.config import settings
from pagepulse.core.errors import capture_exception
from pagepulse.core.logging_config import get_logger
from pagepulse.services.retention import RetentionSweeper

logger = get_logger(__name__)

scheduler = AsyncIOScheduler()


def job_retention_sweep(engine: Engine) -> None:
    """Runs in the scheduler's thread pool; the sweep is blocking I/O."""
    try:
        result = RetentionSweeper(engine, settings.DATA_RETENTION_MONTHS).run()
    except Exception as e:
        capture_exception(e, context={"job": "retention_sweep"})
        return
    logger.info("Scheduled retention sweep complete", **result.to_dict())


def start_scheduler(engine: Engine) -> None:
    # max_instances=1: a slow sweep must not overlap the next day's run
    # coalesce=True: missed runs collapse into one
    scheduler.add_job(
        job_retention_sweep,
        CronTrigger(hour=settings.RETENTION_SWEEP_HOUR, minute=0, timezone="UTC"),
        args=[engine],
        id="job_retention_sweep",
        max_instances=1,
        misfire_grace_time=3600,  # 1 hour
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started", retention_sweep_hour_utc=settings.RETENTION_SWEEP_HOUR)


def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
