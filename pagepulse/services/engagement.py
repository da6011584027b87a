"""
Engagement appends: overwrite duration/scroll on an existing pageview.

Concurrent appends for one page_id resolve last-write-wins. The update is
a single statement so the lookup and the write cannot interleave with
another append.
"""

import structlog
from sqlalchemy import update
from sqlmodel import Session

from pagepulse.core.errors import PageviewNotFound
from pagepulse.models import Pageview
from pagepulse.schemas import AppendPayload

logger = structlog.get_logger(__name__)


def append_engagement(db: Session, payload: AppendPayload) -> None:
    """
    Raises:
        PageviewNotFound: no pageview has ``payload.page_id``; nothing is written.
    """
    statement = (
        update(Pageview)
        .where(Pageview.page_id == payload.page_id)
        .values(
            duration_seconds=payload.duration_seconds,
            scrolled_percentage=payload.scrolled_percentage,
            # Mirrors duration until active-time tracking exists client-side
            time_on_page_seconds=payload.duration_seconds,
        )
    )
    result = db.execute(statement)
    if result.rowcount == 0:
        db.rollback()
        raise PageviewNotFound(payload.page_id)
    db.commit()

    logger.info(
        "Engagement updated",
        page_id=payload.page_id,
        duration_seconds=payload.duration_seconds,
        scrolled_percentage=payload.scrolled_percentage,
    )
