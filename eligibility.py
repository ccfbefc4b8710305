"""
Eligibility decision engine.

A pure function from (tract, tract record, priority label, county income,
policy) to an EligibilityOutcome.  No I/O, no clock, no globals: the same
inputs always produce the same outcome.

Branches are evaluated in a fixed order and the first match wins:

  1. TRACT_NOT_FOUND     tract has no row in the tract table -> redirect to
                         the general program site
  2. OUTSIDE_REGION      tract is in a non-primary region -> redirect to
                         that region's site
  3. AWAITING_EXPANSION  primary region but flagged ineligible -> collect an
                         email or send to the signup form (policy)
  4. ELIGIBLE            primary region and eligible

Downstream consumers rely on this order (e.g. a tract with no table row is
never reported as "wrong region").

The priority-population assessment and the county income view are computed
independently of the branch and attached to every outcome.  A missing
income record never changes the branch.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from eligibility_config import ACTION_VISIT_SIGNUP, EligibilityPolicy
from reference_data import IncomeRecord, TractRecord, display_tract

UNKNOWN_REGION = "Unknown"

# CARB labels that do NOT mark a priority population (compared lower-cased,
# after stripping the "preview for " prefix).
INELIGIBLE_PRIORITY_LABELS = frozenset({
    "low-income community",
    "not a priority population area: low-income households are eligible",
})
_PREVIEW_PREFIX = "preview for "


class Branch(Enum):
    TRACT_NOT_FOUND = "tract_not_found"
    OUTSIDE_REGION = "outside_region"
    AWAITING_EXPANSION = "awaiting_expansion"
    ELIGIBLE = "eligible"


class Action(Enum):
    NONE = "none"
    REDIRECT = "redirect"
    COLLECT_EMAIL = "collect-email"
    VISIT_SIGNUP = "visit-signup"


# =============================================================================
# PRIORITY POPULATION
# =============================================================================

def normalize_priority_label(label: Optional[str]) -> str:
    """Lower-case, trim, and drop an optional 'preview for ' prefix."""
    norm = (label or "").strip().lower()
    if norm.startswith(_PREVIEW_PREFIX):
        norm = norm[len(_PREVIEW_PREFIX):].strip()
    return norm


@dataclass(frozen=True)
class PriorityAssessment:
    is_priority: bool
    label: str          # trimmed label as published; "" when absent

    @property
    def eligibility_label(self) -> str:
        """Batch column wording: Eligible / Not Eligible / Unknown."""
        if not self.label:
            return "Unknown"
        return "Eligible" if self.is_priority else "Not Eligible"

    def to_dict(self) -> Dict[str, Any]:
        return {"is_priority": self.is_priority, "label": self.label}


def assess_priority(label: Optional[str]) -> PriorityAssessment:
    """Priority = non-empty label outside the ineligible phrase set."""
    cleaned = (label or "").strip()
    if not cleaned:
        return PriorityAssessment(is_priority=False, label="")
    is_priority = normalize_priority_label(cleaned) not in INELIGIBLE_PRIORITY_LABELS
    return PriorityAssessment(is_priority=is_priority, label=cleaned)


# =============================================================================
# OUTCOME
# =============================================================================

@dataclass(frozen=True)
class EligibilityOutcome:
    """Terminal result of one lookup."""
    branch: Branch
    eligible: bool
    tract: str                       # display form
    message: str
    region: str
    action: Action
    priority_population: PriorityAssessment
    link: Optional[str] = None
    signup_url: Optional[str] = None
    county_income: Optional[IncomeRecord] = None
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape served to the widget.  Absent keys are omitted."""
        out: Dict[str, Any] = {
            "success": self.success,
            "eligible": self.eligible,
            "tract": self.tract,
            "message": self.message,
            "region": self.region,
        }
        if self.action is not Action.NONE:
            out["action"] = self.action.value
        if self.link:
            out["link"] = self.link
        if self.signup_url:
            out["signup_url"] = self.signup_url
        out["priority_population"] = self.priority_population.to_dict()
        out["county_income"] = self.county_income.to_dict() if self.county_income else None
        return out


# =============================================================================
# DECISION
# =============================================================================

def _same_region(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


def classify(tract_record: Optional[TractRecord], policy: EligibilityPolicy) -> Branch:
    """Pick the branch.  Order is the contract; see module docstring."""
    if tract_record is None:
        return Branch.TRACT_NOT_FOUND
    if not _same_region(tract_record.region, policy.primary_region):
        return Branch.OUTSIDE_REGION
    if not tract_record.is_eligible:
        return Branch.AWAITING_EXPANSION
    return Branch.ELIGIBLE


def decide(
    tract: Optional[str],
    tract_record: Optional[TractRecord],
    priority_label: Optional[str],
    county_income: Optional[IncomeRecord],
    policy: EligibilityPolicy,
    overlay_county: Optional[str] = None,
) -> EligibilityOutcome:
    """Map lookup inputs to exactly one EligibilityOutcome.

    *tract* is the canonical 11-digit tract from the overlay (or None when
    the overlay returned none); the outcome carries its display form.
    """
    shown_tract = display_tract(tract) if tract else ""
    priority = assess_priority(priority_label)
    branch = classify(tract_record, policy)
    common = dict(
        branch=branch,
        tract=shown_tract,
        priority_population=priority,
        county_income=county_income,
    )

    if branch is Branch.TRACT_NOT_FOUND:
        return EligibilityOutcome(
            eligible=False,
            message=f"Tract {shown_tract or 'unknown'} not found in dataset.",
            region=overlay_county or UNKNOWN_REGION,
            action=Action.REDIRECT,
            link=policy.general_redirect_url,
            **common,
        )

    region = tract_record.region
    if branch is Branch.OUTSIDE_REGION:
        if not region:
            return EligibilityOutcome(
                eligible=False,
                message="Your address is outside the program's service territory.",
                region=UNKNOWN_REGION,
                action=Action.REDIRECT,
                link=policy.general_redirect_url,
                **common,
            )
        return EligibilityOutcome(
            eligible=False,
            message=(
                f"You are located in the {region} region, which is outside "
                f"the program's service territory."
            ),
            region=region,
            action=Action.REDIRECT,
            link=policy.region_redirect_url(region),
            **common,
        )

    primary = policy.primary_region
    if branch is Branch.AWAITING_EXPANSION:
        if policy.ineligible_action == ACTION_VISIT_SIGNUP:
            return EligibilityOutcome(
                eligible=False,
                message=(
                    f"You are in the {primary} region but not yet eligible. "
                    f"Join the mailing list to hear when eligibility expands."
                ),
                region=primary,
                action=Action.VISIT_SIGNUP,
                signup_url=policy.signup_url,
                **common,
            )
        return EligibilityOutcome(
            eligible=False,
            message=(
                f"You are in the {primary} region but not yet eligible. "
                f"Leave your email and we'll let you know when eligibility expands."
            ),
            region=primary,
            action=Action.COLLECT_EMAIL,
            **common,
        )

    return EligibilityOutcome(
        eligible=True,
        message=f"You are in the {primary} region and eligible!",
        region=primary,
        action=Action.NONE,
        **common,
    )
