"""Database utilities for classifying connection failures and health checks.

The retention sweeper aborts a run on connection-class failures (the
database is unreachable, nothing else will succeed) but skips over any
other per-batch error.
"""

import logging
import socket

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, DisconnectionError
from sqlmodel import Session

logger = logging.getLogger(__name__)

# Fragments of driver messages that indicate the connection itself is gone
CONNECTION_ERRORS = (
    "connection refused",
    "econnrefused",
    "could not translate host name",
    "name or service not known",
    "nodename nor servname provided",
    "temporary failure in name resolution",
    "enotfound",
    "timed out",
    "etimedout",
    "server closed the connection unexpectedly",
    "connection closed",
    "connection terminated",
    "terminating connection",
    "could not connect to server",
    "connection reset by peer",
)


def is_connection_error(error: BaseException) -> bool:
    """Check if an error means the database connection is unusable."""
    if isinstance(error, (ConnectionError, TimeoutError, socket.gaierror, DisconnectionError)):
        return True
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    error_msg = str(error).lower()
    return any(msg in error_msg for msg in CONNECTION_ERRORS)


def check_db_connection(engine: Engine) -> bool:
    """
    Check if database connection is healthy.
    Returns True if connection is good, False otherwise.
    """
    try:
        with Session(engine) as session:
            session.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logger.error(f"[DB Health] Connection check failed: {e}")
        return False
