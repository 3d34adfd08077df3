"""
Best-effort IP geolocation.

Lookups never raise: any transport error, timeout or unexpected payload is
logged and turned into None so callers can fall back to "Unknown".
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from invitehub.config import settings

logger = logging.getLogger(__name__)

UNKNOWN_LOCATION = "Unknown"


@dataclass(frozen=True)
class GeoLocation:
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None

    def describe(self) -> str:
        parts = [part for part in (self.city, self.region, self.country) if part]
        return ", ".join(parts) if parts else UNKNOWN_LOCATION


def _is_public_ip(ip: str) -> bool:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_unspecified
    )


class GeoLocator:
    """Resolves client IPs through an ip-api compatible JSON endpoint."""

    def __init__(
        self,
        url_template: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.url_template = url_template or settings.GEOLOCATION_URL
        self.timeout = timeout if timeout is not None else settings.GEOLOCATION_TIMEOUT_SECONDS
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def lookup(self, ip: Optional[str]) -> Optional[GeoLocation]:
        if not ip or not _is_public_ip(ip):
            return None

        try:
            response = self.client.get(self.url_template.format(ip=ip), timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Geolocation lookup failed for {ip}: {e}")
            return None

        if data.get("status") == "fail":
            logger.warning(f"Geolocation lookup rejected for {ip}: {data.get('message')}")
            return None

        return GeoLocation(
            country=data.get("country"),
            region=data.get("regionName") or data.get("region"),
            city=data.get("city"),
            lat=data.get("lat"),
            lon=data.get("lon"),
        )

    def describe(self, ip: Optional[str]) -> str:
        location = self.lookup(ip)
        return location.describe() if location else UNKNOWN_LOCATION

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
