"""
Single-address lookup pipeline: validate -> overlay -> decide.

Each stage feeds the next, so there is no parallelism inside one lookup.
Any EligibilityLookupError aborts the lookup and propagates to the caller
(the HTTP layer reports it; the batch orchestrator records it per row).
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from address_validation import AddressCandidate, SmartyClient
from eligibility import EligibilityOutcome, decide
from eligibility_config import EligibilityPolicy
from geo_overlay import GeoOverlayClient, OverlayResult
from lookup_trace import timed_stage
from reference_data import ReferenceData

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LookupResult:
    candidate: AddressCandidate
    overlay: OverlayResult
    outcome: EligibilityOutcome

    def to_dict(self) -> Dict[str, Any]:
        """Validate fields merged with the outcome, as the widget expects."""
        merged = self.candidate.to_dict()
        merged.update(self.outcome.to_dict())
        return merged


def decide_for_overlay(
    overlay: OverlayResult,
    zipcode: Optional[str],
    reference: ReferenceData,
    policy: EligibilityPolicy,
) -> EligibilityOutcome:
    """Join overlay attributes with the reference tables and decide."""
    tract = overlay.tract
    return decide(
        tract=tract,
        tract_record=reference.find_tract(tract),
        priority_label=overlay.priority_label,
        county_income=reference.find_income(zipcode),
        policy=policy,
        overlay_county=overlay.county,
    )


def evaluate_coordinates(
    lat: Any,
    lon: Any,
    zipcode: Optional[str],
    *,
    reference: ReferenceData,
    overlay_client: GeoOverlayClient,
    policy: EligibilityPolicy,
) -> Tuple[OverlayResult, EligibilityOutcome]:
    """Overlay one coordinate pair and decide eligibility."""
    overlay = timed_stage("overlay", overlay_client.overlay, lat, lon)
    outcome = timed_stage("decide", decide_for_overlay, overlay, zipcode, reference, policy)
    logger.info(
        "Decision tract=%s branch=%s eligible=%s",
        outcome.tract or "-", outcome.branch.value, outcome.eligible,
    )
    return overlay, outcome


def lookup_address(
    address: Optional[str],
    *,
    reference: ReferenceData,
    smarty_client: SmartyClient,
    overlay_client: GeoOverlayClient,
    policy: EligibilityPolicy,
) -> LookupResult:
    """Run the full chain for one free-text address."""
    candidate = timed_stage("validate", smarty_client.validate, address)
    overlay, outcome = evaluate_coordinates(
        candidate.latitude,
        candidate.longitude,
        candidate.zipcode,
        reference=reference,
        overlay_client=overlay_client,
        policy=policy,
    )
    return LookupResult(candidate=candidate, overlay=overlay, outcome=outcome)
