"""
Batch eligibility lookups over an uploaded address list.

Every non-blank address runs the full lookup chain.  A row that fails is
recorded as an error row (input address + reason) and the batch moves on;
the output always has one row per non-blank input, in input order.

Only an empty or unreadable upload is a top-level failure (ClientInputError).
"""

import csv
import io
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from errors import (
    ClientInputError,
    MissingCoordinatesError,
    NoMatchError,
    UpstreamFormatError,
    UpstreamTransportError,
)
from lookup import LookupResult
from lookup_trace import LookupTrace, clear_trace, set_trace
from reference_data import ReferenceData

logger = logging.getLogger(__name__)

RESULT_COLUMNS = [
    "InputAddress",
    "StandardizedAddress",
    "ZipCode",
    "CensusTract",
    "Region",
    "Eligible",
    "EligibilityMessage",
    "Action",
    "County",
    "AssemblyDistrict",
    "SenateDistrict",
    "CaliforniaClimateZone",
    "DisadvantagedCommunity",
    "LowIncomeCommunity",
    "CARB_PriorityPopulation",
    "WithinHalfMileOfADisadvantagedCommunity",
    "Error",
]
EMPTY_RESULT_COLUMNS = ["InputAddress", "Error"]


@dataclass(frozen=True)
class BatchRow:
    """One output row: either a projected result or an error reason."""
    input_address: str
    fields: Optional[Dict[str, str]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_record(self) -> Dict[str, str]:
        if self.error is not None:
            return {"InputAddress": self.input_address, "Error": self.error}
        record = {"InputAddress": self.input_address}
        record.update(self.fields or {})
        return record


# =============================================================================
# INPUT
# =============================================================================

def read_addresses_csv(text: str) -> List[str]:
    """Addresses from a CSV with an 'address' header column.

    Blank addresses are kept (the orchestrator skips them) so callers can
    count what was dropped.  Raises ClientInputError for unusable input.
    """
    if not text or not text.strip():
        raise ClientInputError("CSV is empty or invalid format")
    try:
        reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
        headers = reader.fieldnames or []
        column = next((h for h in headers if h and h.strip().lower() == "address"), None)
        if column is None:
            raise ClientInputError("CSV must have an 'address' column")
        addresses = [(row.get(column) or "") for row in reader]
    except csv.Error as e:
        raise ClientInputError("CSV is empty or invalid format") from e
    if not addresses:
        raise ClientInputError("CSV is empty or invalid format")
    return addresses


# =============================================================================
# PROJECTION
# =============================================================================

def project_result(result: LookupResult, reference: ReferenceData) -> Dict[str, str]:
    """Flatten a LookupResult into the batch output columns."""
    candidate, overlay, outcome = result.candidate, result.overlay, result.outcome
    zipcode = candidate.zipcode or ""
    climate_zone = (
        overlay.climate_zone
        or reference.climate_zone(zipcode)
        or "N/A"
    )
    priority = outcome.priority_population
    county = overlay.county or (
        outcome.county_income.county if outcome.county_income else ""
    )
    return {
        "StandardizedAddress": candidate.standardized_address,
        "ZipCode": zipcode,
        "CensusTract": outcome.tract,
        "Region": outcome.region,
        "Eligible": "Yes" if outcome.eligible else "No",
        "EligibilityMessage": outcome.message,
        "Action": outcome.action.value,
        "County": county,
        "AssemblyDistrict": overlay.assembly_district or "",
        "SenateDistrict": overlay.senate_district or "",
        "CaliforniaClimateZone": climate_zone,
        "DisadvantagedCommunity": overlay.dac or "",
        "LowIncomeCommunity": overlay.lic or "",
        "CARB_PriorityPopulation": priority.label or "N/A",
        "WithinHalfMileOfADisadvantagedCommunity": priority.eligibility_label,
    }


def error_reason(exc: Exception) -> str:
    """Row-level reason for a failed lookup."""
    if isinstance(exc, MissingCoordinatesError):
        return "No coordinates returned"
    if isinstance(exc, NoMatchError):
        return "Address not found"
    if isinstance(exc, UpstreamFormatError):
        return "Overlay response unreadable"
    if isinstance(exc, UpstreamTransportError):
        return "Upstream request failed"
    if isinstance(exc, ClientInputError):
        return str(exc)
    return "Processing failed"


# =============================================================================
# ORCHESTRATION
# =============================================================================

LookupFn = Callable[[str], LookupResult]


def _process_one(
    index: int,
    address: str,
    lookup_fn: LookupFn,
    reference: ReferenceData,
    batch_id: str,
) -> BatchRow:
    trace = LookupTrace(trace_id=f"{batch_id}:{index}")
    set_trace(trace)
    try:
        result = lookup_fn(address)
        return BatchRow(input_address=address, fields=project_result(result, reference))
    except Exception as exc:
        reason = error_reason(exc)
        if reason == "Processing failed":
            logger.exception("Error processing address %r", address)
        else:
            logger.warning("Batch row %d (%r) failed: %s", index, address, exc)
        return BatchRow(input_address=address, error=reason)
    finally:
        trace.log_summary()
        clear_trace()


def process_batch(
    addresses: Iterable[str],
    lookup_fn: LookupFn,
    reference: ReferenceData,
    max_workers: int = 1,
    batch_id: str = "batch",
) -> List[BatchRow]:
    """Run lookup_fn for each non-blank address, isolating row failures.

    With max_workers > 1 rows run on a thread pool; output order still
    matches input order.
    """
    work = [a.strip() for a in addresses if a and a.strip()]
    logger.info("Batch %s: %d address(es), workers=%d", batch_id, len(work), max_workers)

    if max_workers <= 1 or len(work) <= 1:
        rows = [
            _process_one(i, address, lookup_fn, reference, batch_id)
            for i, address in enumerate(work)
        ]
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            rows = list(pool.map(
                lambda item: _process_one(item[0], item[1], lookup_fn, reference, batch_id),
                enumerate(work),
            ))

    failed = sum(1 for r in rows if not r.ok)
    logger.info("Batch %s done: %d ok, %d failed", batch_id, len(rows) - failed, failed)
    return rows


# =============================================================================
# OUTPUT
# =============================================================================

def rows_to_csv(rows: List[BatchRow]) -> str:
    """Render batch rows as CSV text (header always present)."""
    output = io.StringIO()
    columns = RESULT_COLUMNS if rows else EMPTY_RESULT_COLUMNS
    writer = csv.DictWriter(output, fieldnames=columns, extrasaction="ignore", restval="")
    writer.writeheader()
    for row in rows:
        writer.writerow(row.to_record())
    return output.getvalue()
