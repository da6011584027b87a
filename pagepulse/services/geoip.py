"""
GeoIP country resolution backed by a MaxMind GeoLite2-Country database.

Resolution is best effort: a missing database, an unroutable/private
address or a corrupt lookup all yield ``None``. Callers never see an
exception and the address itself is never logged.
"""

import os
from typing import Optional, Protocol

import geoip2.database
import geoip2.errors
import structlog

logger = structlog.get_logger(__name__)


class GeoIPResolver(Protocol):
    def lookup_country(self, ip: str) -> Optional[str]: ...

    def close(self) -> None: ...


class NullGeoIPResolver:
    """Used when no database is installed; every lookup misses."""

    def lookup_country(self, ip: str) -> Optional[str]:
        return None

    def close(self) -> None:
        pass


class MaxMindGeoIPResolver:
    def __init__(self, reader: geoip2.database.Reader):
        self._reader = reader

    def lookup_country(self, ip: str) -> Optional[str]:
        """
        Return the ISO 3166-1 alpha-2 country code for ``ip``, upper-cased.

        Examples:
            lookup_country("8.8.8.8")    -> "US"
            lookup_country("127.0.0.1")  -> None (not in database)
            lookup_country("not-an-ip")  -> None
        """
        if not ip or not ip.strip():
            return None
        try:
            response = self._reader.country(ip.strip())
        except geoip2.errors.AddressNotFoundError:
            return None
        except ValueError:
            logger.warning("GeoIP lookup rejected malformed address")
            return None
        except Exception as e:
            logger.warning("GeoIP lookup failed", error_type=type(e).__name__)
            return None

        code = response.country.iso_code
        return code.upper() if code else None

    def close(self) -> None:
        self._reader.close()


def open_geoip_resolver(database_path: str) -> GeoIPResolver:
    """Open the configured database, degrading to a resolver that always misses."""
    if not database_path or not os.path.exists(database_path):
        logger.warning(
            "GeoIP database not found, country lookups disabled",
            path=database_path,
        )
        return NullGeoIPResolver()
    try:
        reader = geoip2.database.Reader(database_path)
    except Exception as e:
        logger.warning("Failed to load GeoIP database", path=database_path, error=str(e))
        return NullGeoIPResolver()

    logger.info("GeoIP database loaded", path=database_path)
    return MaxMindGeoIPResolver(reader)
