"""
Pageview ingestion: enrich a validated payload and persist it once.

Enrichment steps are independent and each degrades to a safe default,
so a broken GeoIP database or an unreachable dedup store never costs a
pageview. The request IP is only ever held in a local for the dedup and
GeoIP calls.
"""

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from pagepulse.models import Pageview
from pagepulse.schemas import PageviewPayload
from pagepulse.services.active_visitors import ActiveVisitorStore
from pagepulse.services.geoip import GeoIPResolver
from pagepulse.services.referrer import classify_referrer
from pagepulse.services.sessions import SessionStore
from pagepulse.services.user_agent import UserAgentClassifier
from pagepulse.services.visitor_dedup import VisitorDeduplicator
from pagepulse.validation import sanitize_path

logger = structlog.get_logger(__name__)


class VisitorLookup(NamedTuple):
    is_unique: bool
    country_code: Optional[str]
    fingerprint: Optional[str]


class IngestOutcome(str, Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"


@dataclass
class IngestResult:
    outcome: IngestOutcome
    pageview: Optional[Pageview] = None


def client_ip(forwarded_for: Optional[str], peer: Optional[str]) -> Optional[str]:
    """
    The address the request was observed from.

    First hop of X-Forwarded-For when present (the client as seen by the
    outermost proxy), otherwise the direct peer.
    """
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    return peer or None


class PageviewIngestor:
    def __init__(
        self,
        ua_classifier: UserAgentClassifier,
        geoip: GeoIPResolver,
        deduplicator: VisitorDeduplicator,
        sessions: Optional[SessionStore] = None,
        active_visitors: Optional[ActiveVisitorStore] = None,
    ):
        self.ua_classifier = ua_classifier
        self.geoip = geoip
        self.deduplicator = deduplicator
        self.sessions = sessions
        self.active_visitors = active_visitors

    def ingest(
        self,
        db: Session,
        payload: PageviewPayload,
        ip: Optional[str],
        header_user_agent: str = "",
    ) -> IngestResult:
        user_agent = payload.user_agent or header_user_agent
        classification = self.ua_classifier.classify(user_agent)
        visitor = self._resolve_visitor(ip, user_agent)
        del ip
        path = sanitize_path(payload.path)
        referrer = classify_referrer(
            payload.document_referrer,
            hostname=payload.hostname,
            is_internal=payload.is_internal_referrer,
        )

        pageview = Pageview(
            page_id=payload.page_id,
            added_iso=payload.added_iso,
            added_day=payload.added_iso.date(),
            session_id=payload.session_id,
            hostname=payload.hostname,
            path=path,
            hash=payload.hash,
            query_string=payload.query_string,
            document_title=payload.document_title,
            document_referrer=payload.document_referrer,
            referrer_domain=referrer.domain,
            referrer_category=referrer.category,
            is_unique=visitor.is_unique,
            is_bot=classification.is_bot,
            is_internal_referrer=payload.is_internal_referrer,
            device_type=classification.device_type or payload.device_type.value,
            browser_name=classification.browser_name,
            browser_version=classification.browser_version,
            browser_major_version=classification.browser_major_version,
            os_name=classification.os_name,
            os_version=classification.os_version,
            viewport_width=payload.viewport_width,
            viewport_height=payload.viewport_height,
            screen_width=payload.screen_width,
            screen_height=payload.screen_height,
            language=payload.language,
            timezone=payload.timezone,
            user_agent=user_agent,
            country_code=visitor.country_code,
            utm_source=payload.utm_source,
            utm_medium=payload.utm_medium,
            utm_campaign=payload.utm_campaign,
            utm_content=payload.utm_content,
            utm_term=payload.utm_term,
            duration_seconds=payload.duration_seconds,
            time_on_page_seconds=payload.time_on_page_seconds,
            scrolled_percentage=payload.scrolled_percentage,
            visibility_changes=payload.visibility_changes,
        )

        db.add(pageview)
        try:
            db.commit()
        except IntegrityError:
            # Same (day, path, session, hostname) or a replayed page_id
            db.rollback()
            logger.info("Duplicate pageview suppressed", page_id=payload.page_id, path=path)
            return IngestResult(IngestOutcome.DUPLICATE)
        db.refresh(pageview)

        if self.sessions is not None and payload.session_id:
            self.sessions.get_or_create(
                payload.session_id,
                referrer=payload.document_referrer,
                utm=payload.utm_params(),
            )
        if self.active_visitors is not None and visitor.fingerprint:
            self.active_visitors.record(visitor.fingerprint)

        logger.info(
            "Pageview recorded",
            page_id=pageview.page_id,
            path=pageview.path,
            device_type=pageview.device_type,
            is_unique=pageview.is_unique,
            is_bot=pageview.is_bot,
        )
        return IngestResult(IngestOutcome.CREATED, pageview)

    def _resolve_visitor(self, ip: Optional[str], user_agent: str) -> VisitorLookup:
        """Uniqueness, country and today's fingerprint for the requesting address."""
        if not ip:
            logger.warning("No client address on request, skipping dedup and GeoIP")
            return VisitorLookup(False, None, None)

        country_code = self.geoip.lookup_country(ip)
        if not user_agent or not user_agent.strip():
            logger.warning("No user agent on request, counting visit as repeat")
            return VisitorLookup(False, country_code, None)
        return VisitorLookup(
            is_unique=self.deduplicator.is_first_visit_today(ip, user_agent),
            country_code=country_code,
            fingerprint=self.deduplicator.fingerprint(ip, user_agent),
        )
