import structlog
from sqlmodel import Session

from pagepulse.models import TrackedEvent
from pagepulse.schemas import EventPayload
from pagepulse.services.geoip import GeoIPResolver
from pagepulse.validation import sanitize_path

logger = structlog.get_logger(__name__)


def record_event(db: Session, payload: EventPayload, geoip: GeoIPResolver, ip: str | None) -> TrackedEvent:
    country_code = geoip.lookup_country(ip) if ip else None
    del ip

    event = TrackedEvent(
        event_name=payload.event_name,
        event_metadata=payload.event_metadata,
        page_id=payload.page_id,
        session_id=payload.session_id,
        path=sanitize_path(payload.path),
        timestamp=payload.timestamp,
        country_code=country_code,
    )
    db.add(event)
    db.commit()
    db.refresh(event)

    logger.info("Event recorded", event_name=event.event_name, page_id=event.page_id)
    return event
