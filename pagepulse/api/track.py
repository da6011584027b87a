"""
Tracking endpoints: pageview create, engagement append, custom events.

Mounted at /api/track and again at /api/metrics for older tracker builds.
Every endpoint accepts a JSON POST; the GET variants take the same payload
base64-encoded in ``?data=`` for clients whose only working transport is an
image request, and answer with a 1x1 GIF.
"""

import base64
import binascii
import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlmodel import Session

from pagepulse.api.deps import get_client_ip, get_ingestor, get_session, get_stores
from pagepulse.core.errors import PagePulseError, PayloadValidationError, capture_exception
from pagepulse.core.logging_config import get_logger
from pagepulse.services.engagement import append_engagement
from pagepulse.services.events import record_event
from pagepulse.services.ingestion import PageviewIngestor
from pagepulse.stores import Stores
from pagepulse.validation import FieldError, Invalid, validate_append, validate_event, validate_pageview

logger = get_logger(__name__)

router = APIRouter()

TRANSPARENT_GIF = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _gif() -> Response:
    return Response(content=TRANSPARENT_GIF, media_type="image/gif", headers=NO_STORE_HEADERS)


def _server_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": message},
    )


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise PayloadValidationError([FieldError("body", "Request body must be valid JSON")])


def _beacon_body(data: Optional[str]) -> Any:
    if not data:
        raise PayloadValidationError([FieldError("data", "Missing data parameter")])
    try:
        # "+" arrives as a space when the client forgot to percent-encode
        raw = base64.b64decode(data.replace(" ", "+"), validate=True)
        return json.loads(raw)
    except (binascii.Error, ValueError):
        raise PayloadValidationError([FieldError("data", "Data must be base64-encoded JSON")])


def _validated(result):
    if isinstance(result, Invalid):
        raise PayloadValidationError(result.errors)
    return result.payload


async def _create(request: Request, body: Any, db: Session, ingestor: PageviewIngestor, ip: Optional[str]):
    payload = _validated(validate_pageview(body))
    try:
        await run_in_threadpool(ingestor.ingest, db, payload, ip, request.headers.get("user-agent", ""))
    except PagePulseError:
        raise
    except Exception as e:
        capture_exception(e, context={"page_id": payload.page_id, "operation": "create_pageview"})
        return _server_error("Failed to record pageview")
    return None


async def _append(body: Any, db: Session):
    payload = _validated(validate_append(body))
    try:
        await run_in_threadpool(append_engagement, db, payload)
    except PagePulseError:
        raise
    except Exception as e:
        capture_exception(e, context={"page_id": payload.page_id, "operation": "append_engagement"})
        return _server_error("Failed to update pageview")
    return None


async def _event(body: Any, db: Session, stores: Stores, ip: Optional[str]):
    payload = _validated(validate_event(body))
    try:
        await run_in_threadpool(record_event, db, payload, stores.geoip, ip)
    except PagePulseError:
        raise
    except Exception as e:
        capture_exception(e, context={"event_name": payload.event_name, "operation": "record_event"})
        return _server_error("Failed to record event")
    return None


@router.post("", status_code=204, response_class=Response)
async def create_pageview(
    request: Request,
    db: Session = Depends(get_session),
    ingestor: PageviewIngestor = Depends(get_ingestor),
    ip: Optional[str] = Depends(get_client_ip),
):
    """Record a pageview. Duplicates are acknowledged the same way as new records."""
    error = await _create(request, await _json_body(request), db, ingestor, ip)
    return error or Response(status_code=204)


@router.get("")
async def create_pageview_beacon(
    request: Request,
    data: Optional[str] = Query(default=None),
    db: Session = Depends(get_session),
    ingestor: PageviewIngestor = Depends(get_ingestor),
    ip: Optional[str] = Depends(get_client_ip),
):
    error = await _create(request, _beacon_body(data), db, ingestor, ip)
    return error or _gif()


@router.post("/append", status_code=204, response_class=Response)
async def append_pageview(request: Request, db: Session = Depends(get_session)):
    """Overwrite duration and scroll depth on an existing pageview (last write wins)."""
    error = await _append(await _json_body(request), db)
    return error or Response(status_code=204)


@router.get("/append")
async def append_pageview_beacon(data: Optional[str] = Query(default=None), db: Session = Depends(get_session)):
    error = await _append(_beacon_body(data), db)
    return error or _gif()


@router.post("/event", status_code=204, response_class=Response)
async def track_event(
    request: Request,
    db: Session = Depends(get_session),
    stores: Stores = Depends(get_stores),
    ip: Optional[str] = Depends(get_client_ip),
):
    error = await _event(await _json_body(request), db, stores, ip)
    return error or Response(status_code=204)


@router.get("/event")
async def track_event_beacon(
    data: Optional[str] = Query(default=None),
    db: Session = Depends(get_session),
    stores: Stores = Depends(get_stores),
    ip: Optional[str] = Depends(get_client_ip),
):
    error = await _event(_beacon_body(data), db, stores, ip)
    return error or _gif()
