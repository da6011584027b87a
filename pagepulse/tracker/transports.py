"""
Delivery transports, in the order the tracker prefers them.

``send`` answers one question: did the transport accept the payload for
sending? Nothing here waits for, or reports, the server's response.
"""

import base64
import json
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Protocol
from urllib.parse import quote

import httpx

from pagepulse.core.logging_config import get_logger

logger = get_logger(__name__)

MAX_BEACON_URL_LENGTH = 2000
REQUEST_TIMEOUT_SECONDS = 10.0


def encode_payload(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


class Transport(Protocol):
    name: str

    def send(self, url: str, payload: Dict[str, Any]) -> bool: ...


class BeaconTransport:
    """
    Unload-safe one-way beacon (navigator.sendBeacon).

    ``send_beacon`` is supplied by the host and returns True when the
    payload was queued. Hosts without the primitive pass None.
    """

    name = "beacon"

    def __init__(self, send_beacon: Optional[Callable[[str, bytes], bool]]):
        self._send_beacon = send_beacon

    def send(self, url: str, payload: Dict[str, Any]) -> bool:
        if self._send_beacon is None:
            return False
        return bool(self._send_beacon(url, encode_payload(payload)))


class _BackgroundHttpTransport:
    name = "http"

    def __init__(self, client: Optional[httpx.Client] = None, executor: Optional[Executor] = None):
        self._client = client or httpx.Client(timeout=REQUEST_TIMEOUT_SECONDS)
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="pagepulse-send")

    def _submit(self, fn: Callable[[], Any]) -> bool:
        try:
            self._executor.submit(self._run, fn)
        except RuntimeError:
            # Executor already shut down (page is gone)
            return False
        return True

    def _run(self, fn: Callable[[], Any]) -> None:
        try:
            fn()
        except httpx.HTTPError as e:
            logger.debug("Tracking request failed", transport=self.name, error=str(e))


class KeepaliveRequestTransport(_BackgroundHttpTransport):
    """POST that outlives the page (fetch with keepalive)."""

    name = "keepalive"

    def send(self, url: str, payload: Dict[str, Any]) -> bool:
        body = encode_payload(payload)
        return self._submit(
            lambda: self._client.post(url, content=body, headers={"Content-Type": "application/json"})
        )


class ImageBeaconTransport(_BackgroundHttpTransport):
    """GET with the payload base64-encoded in ``?data=``; last resort."""

    name = "image"

    def send(self, url: str, payload: Dict[str, Any]) -> bool:
        beacon_url = build_beacon_url(url, payload)
        if len(beacon_url) > MAX_BEACON_URL_LENGTH:
            logger.debug("Payload too large for image beacon", length=len(beacon_url))
            return False
        return self._submit(lambda: self._client.get(beacon_url))


def build_beacon_url(url: str, payload: Dict[str, Any]) -> str:
    data = base64.b64encode(encode_payload(payload)).decode("ascii")
    return f"{url}?data={quote(data, safe='')}"
