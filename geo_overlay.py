"""
Census tract and screening attributes from the ArcGIS location-overlay service.

The overlay geoprocessing task takes a coordinate pair and returns a results
envelope whose first element's ``value`` object carries the tract GEOID, the
CARB priority-population label, and a handful of district/community fields.

The service is not reliable about its content type: a healthy response is
JSON, but proxies and error paths sometimes wrap the same JSON in an HTML
page.  Parsing therefore runs an ordered chain of strategies, stopping at the
first that yields a JSON object:

  1. strict JSON parse of the whole body
  2. first ``{...}`` span in the body that decodes as a JSON object

If neither succeeds the lookup fails with UpstreamFormatError.  Raw payloads
never leave this module; callers get an OverlayResult.
"""

import json
import logging
import math
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from errors import ClientInputError, UpstreamFormatError, UpstreamTransportError
from lookup_trace import record_api
from reference_data import display_tract, pad_tract

logger = logging.getLogger(__name__)

_SERVICE = "arcgis_overlay"
_ENDPOINT = "LocOverlay_CT/execute"

# Tract GEOID field; older task versions publish it as GeoID.
TRACT_FIELDS = ("tract", "GeoID")
PRIORITY_FIELD = "carb_priority_pops_4"

# Extra GP output parameters the task accepts; harmless for single lookups.
_TASK_PARAMS = {
    "returnZ": "false",
    "returnM": "false",
    "returnTrueCurves": "false",
    "returnFeatureCollection": "false",
    "returnColumnName": "false",
    "simplifyFeatures": "true",
    "context": "",
    "f": "pjson",
}


@dataclass(frozen=True)
class OverlayResult:
    """Normalized overlay attributes for one coordinate pair.  All optional."""
    raw_tract: Optional[str] = None
    priority_label: Optional[str] = None
    county: Optional[str] = None
    assembly_district: Optional[str] = None
    senate_district: Optional[str] = None
    climate_zone: Optional[str] = None
    dac: Optional[str] = None
    lic: Optional[str] = None

    @property
    def tract(self) -> Optional[str]:
        """Canonical 11-digit tract, or None when the overlay had none."""
        return pad_tract(self.raw_tract) if self.raw_tract else None

    @property
    def display_tract(self) -> Optional[str]:
        tract = self.tract
        return display_tract(tract) if tract else None


# =============================================================================
# PAYLOAD PARSING
# =============================================================================

_OBJECT_START = re.compile(r"\{")


def _parse_strict_json(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _parse_embedded_json(text: str) -> Optional[Dict[str, Any]]:
    """First '{' in *text* that starts a complete JSON object."""
    decoder = json.JSONDecoder()
    for match in _OBJECT_START.finditer(text):
        try:
            data, _ = decoder.raw_decode(text, match.start())
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    return None


PAYLOAD_PARSERS: Tuple[Callable[[str], Optional[Dict[str, Any]]], ...] = (
    _parse_strict_json,
    _parse_embedded_json,
)


def parse_overlay_payload(text: Optional[str]) -> Dict[str, Any]:
    """Decode an overlay response body.  Raises UpstreamFormatError."""
    text = text or ""
    for parser in PAYLOAD_PARSERS:
        data = parser(text)
        if data is not None:
            if parser is not _parse_strict_json:
                logger.info("Overlay payload recovered via %s", parser.__name__)
            return data
    raise UpstreamFormatError("Overlay response could not be parsed as JSON")


# =============================================================================
# FIELD EXTRACTION
# =============================================================================

def _as_text(value: Any) -> Optional[str]:
    """Coerce a payload value to a trimmed string; blanks become None."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _result_value(payload: Dict[str, Any]) -> Dict[str, Any]:
    results = payload.get("results")
    if not isinstance(results, list) or not results:
        return {}
    first = results[0]
    if not isinstance(first, dict):
        return {}
    value = first.get("value")
    return value if isinstance(value, dict) else {}


def extract_overlay_result(payload: Dict[str, Any]) -> OverlayResult:
    """Pull the fields we use out of a decoded overlay payload."""
    value = _result_value(payload)
    if not value:
        logger.warning(
            "Overlay payload has no results value (keys=%s)", sorted(payload.keys())
        )

    raw_tract = None
    for name in TRACT_FIELDS:
        raw_tract = _as_text(value.get(name))
        if raw_tract:
            break

    return OverlayResult(
        raw_tract=raw_tract,
        priority_label=_as_text(value.get(PRIORITY_FIELD)),
        county=_as_text(value.get("county")),
        assembly_district=_as_text(value.get("AssemblyDist")),
        senate_district=_as_text(value.get("SenateDistrict")),
        climate_zone=_as_text(value.get("CA_climate_zone")),
        dac=_as_text(value.get("dac")),
        lic=_as_text(value.get("lic")),
    )


# =============================================================================
# CLIENT
# =============================================================================

def require_coordinates(lat: Any, lon: Any) -> Tuple[float, float]:
    """Reject missing, non-numeric or non-finite coordinates.

    Known limitation: any falsy value is rejected, including a real 0.0.
    """
    if not lat or not lon:
        raise ClientInputError("Missing lat/lon input")
    try:
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError):
        raise ClientInputError("lat/lon must be numeric")
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ClientInputError("lat/lon must be finite numbers")
    return lat, lon


class GeoOverlayClient:
    """Client for the ArcGIS LocOverlay_CT geoprocessing task."""

    def __init__(self, base_url: str, timeout: Optional[float] = None):
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

    def overlay(self, lat: Any, lon: Any) -> OverlayResult:
        lat, lon = require_coordinates(lat, lon)
        params = dict(_TASK_PARAMS, longitude=lon, latitude=lat)

        t0 = time.time()
        try:
            resp = self.session.get(self.base_url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            note = "timeout" if isinstance(e, requests.Timeout) else "exception"
            record_api(_SERVICE, _ENDPOINT, t0, 0, False, note)
            logger.warning("Overlay request failed for (%.5f, %.5f)", lat, lon, exc_info=True)
            raise UpstreamTransportError("Overlay request failed") from e

        if not resp.ok:
            # Error pages sometimes still carry the JSON result; try to parse.
            logger.warning("Overlay returned HTTP %d for (%.5f, %.5f)", resp.status_code, lat, lon)

        try:
            payload = parse_overlay_payload(resp.text)
        except UpstreamFormatError:
            record_api(_SERVICE, _ENDPOINT, t0, resp.status_code, False, "bad_format")
            logger.warning(
                "Unparsable overlay response for (%.5f, %.5f): %.200r",
                lat, lon, resp.text,
            )
            raise

        record_api(_SERVICE, _ENDPOINT, t0, resp.status_code, True)
        return extract_overlay_result(payload)
