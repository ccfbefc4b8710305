"""
Address normalization via the Smarty US Street Address API.

One call per lookup, first-match policy: the first candidate Smarty returns
is authoritative.  No ranking, no disambiguation, no retry.

Outcomes:
  - AddressCandidate          standardized address, coordinates, ZIP
  - NoMatchError              empty/non-list response, or a candidate with
                              no coordinates (a negative result, not a failure)
  - UpstreamTransportError    network error, HTTP error, unparsable body
  - ClientInputError          blank or non-string address (never forwarded upstream)
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from errors import (
    ClientInputError,
    MissingCoordinatesError,
    NoMatchError,
    UpstreamTransportError,
)
from lookup_trace import record_api

logger = logging.getLogger(__name__)

_SERVICE = "smarty"
_ENDPOINT = "street-address"


@dataclass(frozen=True)
class AddressCandidate:
    """Standardized address and location from the first Smarty candidate."""
    standardized_address: str
    latitude: float
    longitude: float
    zipcode: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "standardized": self.standardized_address,
            "lat": self.latitude,
            "lon": self.longitude,
            "zipcode": self.zipcode,
        }


def parse_candidate(candidate: Dict[str, Any]) -> AddressCandidate:
    """Build an AddressCandidate from one Smarty candidate object."""
    metadata = candidate.get("metadata") or {}
    lat = metadata.get("latitude")
    lon = metadata.get("longitude")
    try:
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError):
        raise MissingCoordinatesError("No coordinates returned from address validation")

    line_1 = candidate.get("delivery_line_1") or ""
    last_line = candidate.get("last_line") or ""
    zipcode = (candidate.get("components") or {}).get("zipcode") or None

    return AddressCandidate(
        standardized_address=f"{line_1}, {last_line}",
        latitude=lat,
        longitude=lon,
        zipcode=zipcode,
    )


class SmartyClient:
    """Thin client for the Smarty US Street Address API."""

    def __init__(
        self,
        auth_id: str,
        auth_token: str,
        base_url: str = "https://us-street.api.smarty.com/street-address",
        timeout: Optional[float] = None,
    ):
        self.auth_id = auth_id
        self.auth_token = auth_token
        self.base_url = base_url
        self.timeout = timeout
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        """Session for the calling thread; requests.Session is not thread-safe."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
        return session

    def validate(self, address: Optional[str]) -> AddressCandidate:
        """Validate and geocode *address*.  See module docstring for outcomes."""
        if address is not None and not isinstance(address, str):
            raise ClientInputError("Address must be a string")
        address = (address or "").strip()
        if not address:
            raise ClientInputError("Missing address input")

        params = {
            "auth-id": self.auth_id,
            "auth-token": self.auth_token,
            "street": address,
        }
        t0 = time.time()
        try:
            resp = self.session.get(self.base_url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            note = "timeout" if isinstance(e, requests.Timeout) else "exception"
            record_api(_SERVICE, _ENDPOINT, t0, 0, False, note)
            logger.warning("Smarty request failed for %r", address, exc_info=True)
            raise UpstreamTransportError("Address validation request failed") from e

        if not resp.ok:
            record_api(_SERVICE, _ENDPOINT, t0, resp.status_code, False, f"HTTP {resp.status_code}")
            logger.warning("Smarty returned HTTP %d for %r", resp.status_code, address)
            raise UpstreamTransportError(
                f"Address validation returned HTTP {resp.status_code}"
            )

        try:
            data = resp.json()
        except ValueError as e:
            record_api(_SERVICE, _ENDPOINT, t0, resp.status_code, False, "bad_json")
            logger.warning("Smarty returned non-JSON body for %r", address)
            raise UpstreamTransportError("Address validation returned an unreadable response") from e

        if not isinstance(data, list) or not data:
            # A successful call with zero candidates is healthy upstream behaviour.
            record_api(_SERVICE, _ENDPOINT, t0, resp.status_code, True)
            logger.info("Smarty returned no candidates for %r: %r", address, data)
            raise NoMatchError("No match found")

        record_api(_SERVICE, _ENDPOINT, t0, resp.status_code, True)
        first = data[0]
        if not isinstance(first, dict):
            raise NoMatchError("No match found")
        return parse_candidate(first)
