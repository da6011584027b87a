from typing import Generator, Optional

from fastapi import Depends, Request
from sqlmodel import Session

from pagepulse.services.ingestion import PageviewIngestor, client_ip
from pagepulse.stores import Stores


def get_stores(request: Request) -> Stores:
    return request.app.state.stores


def get_session(stores: Stores = Depends(get_stores)) -> Generator[Session, None, None]:
    with Session(stores.engine) as session:
        yield session


def get_ingestor(stores: Stores = Depends(get_stores)) -> PageviewIngestor:
    return PageviewIngestor(
        ua_classifier=stores.ua_classifier,
        geoip=stores.geoip,
        deduplicator=stores.deduplicator,
        sessions=stores.sessions,
        active_visitors=stores.active_visitors,
    )


def get_client_ip(request: Request) -> Optional[str]:
    """Request-observed client address. Never persist or log the result."""
    peer = request.client.host if request.client else None
    return client_ip(request.headers.get("x-forwarded-for"), peer)
