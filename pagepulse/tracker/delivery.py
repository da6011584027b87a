from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Sequence

import httpx

from pagepulse.core.logging_config import get_logger
from pagepulse.tracker.transports import (
    REQUEST_TIMEOUT_SECONDS,
    BeaconTransport,
    ImageBeaconTransport,
    KeepaliveRequestTransport,
    Transport,
)

logger = get_logger(__name__)


class Dispatcher:
    """
    Hands a payload to the first transport that accepts it.

    Transports are tried in priority order. Acceptance is final: a payload
    accepted and then lost in flight is not re-sent on a lower tier.
    """

    def __init__(self, transports: Sequence[Transport]):
        self.transports = list(transports)

    def deliver(self, url: str, payload: Dict[str, Any]) -> Optional[str]:
        """Returns the name of the accepting transport, or None when all refused."""
        for transport in self.transports:
            try:
                accepted = transport.send(url, payload)
            except Exception as e:
                logger.debug("Transport raised, trying next", transport=transport.name, error=str(e))
                continue
            if accepted:
                return transport.name

        logger.debug("No transport accepted payload", url=url)
        return None


def default_dispatcher(
    send_beacon: Optional[Callable[[str, bytes], bool]] = None,
    client: Optional[httpx.Client] = None,
) -> Dispatcher:
    """Beacon, then keepalive POST, then image GET."""
    client = client or httpx.Client(timeout=REQUEST_TIMEOUT_SECONDS)
    executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="pagepulse-send")
    return Dispatcher(
        [
            BeaconTransport(send_beacon),
            KeepaliveRequestTransport(client, executor),
            ImageBeaconTransport(client, executor),
        ]
    )
