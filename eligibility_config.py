"""
Runtime configuration for the eligibility lookup service.

Two frozen dataclasses, built once at startup from the environment:

  - EligibilityPolicy: program rules that vary per deployment (primary
    region, what to do with Central-but-not-yet-eligible addresses, and
    where redirects point).
  - ServiceConfig: upstream credentials/endpoints, reference table paths,
    rate limits and batch concurrency.

Frozen dataclasses keep config typed and immutable without a YAML layer.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

# Values accepted for INELIGIBLE_ACTION.
ACTION_COLLECT_EMAIL = "collect-email"
ACTION_VISIT_SIGNUP = "visit-signup"
INELIGIBLE_ACTIONS = (ACTION_COLLECT_EMAIL, ACTION_VISIT_SIGNUP)

_DEFAULT_SMARTY_URL = "https://us-street.api.smarty.com/street-address"
_DEFAULT_OVERLAY_URL = (
    "https://maps3.energycenter.org/arcgis/rest/services/sync"
    "/GPServer/LocOverlay_CT/execute"
)


@dataclass(frozen=True)
class EligibilityPolicy:
    """Deployment policy consulted by the decision engine."""
    primary_region: str = "Central"
    ineligible_action: str = ACTION_COLLECT_EMAIL
    general_redirect_url: str = "https://program-site/general"
    region_redirect_url_template: str = "https://program-site/{region}"
    signup_url: str = "https://program-site/signup"

    def __post_init__(self):
        if self.ineligible_action not in INELIGIBLE_ACTIONS:
            raise ValueError(
                f"ineligible_action must be one of {INELIGIBLE_ACTIONS}, "
                f"got {self.ineligible_action!r}"
            )

    def region_redirect_url(self, region: str) -> str:
        return self.region_redirect_url_template.format(region=region)


@dataclass(frozen=True)
class ServiceConfig:
    """Upstream endpoints, credentials and file locations."""
    smarty_auth_id: str = ""
    smarty_auth_token: str = ""
    smarty_base_url: str = _DEFAULT_SMARTY_URL
    overlay_url: str = _DEFAULT_OVERLAY_URL
    # None means requests waits indefinitely (no timeout layer by default).
    upstream_timeout: Optional[float] = None
    tracts_path: str = "data/tracts.csv"
    income_limits_path: str = "data/income_limits.csv"
    climate_zones_path: Optional[str] = "data/climate_zones.csv"
    rate_limit_default: str = "60/minute"
    rate_limit_validate: str = "5/second"
    # Concurrent lookups per CSV upload; 1 is sequential.
    batch_max_workers: int = 1

    def __post_init__(self):
        if self.batch_max_workers < 1:
            raise ValueError(
                f"batch_max_workers must be at least 1, got {self.batch_max_workers!r}"
            )

    def missing_keys(self) -> Tuple[str, ...]:
        """Names of required credentials that are not configured."""
        missing = []
        if not self.smarty_auth_id:
            missing.append("SMARTY_AUTH_ID")
        if not self.smarty_auth_token:
            missing.append("SMARTY_AUTH_TOKEN")
        return tuple(missing)


def load_policy(env: Optional[Mapping[str, str]] = None) -> EligibilityPolicy:
    """Build an EligibilityPolicy from environment variables."""
    env = os.environ if env is None else env
    defaults = EligibilityPolicy()
    return EligibilityPolicy(
        primary_region=env.get("PRIMARY_REGION", defaults.primary_region),
        ineligible_action=env.get(
            "INELIGIBLE_ACTION", defaults.ineligible_action
        ).strip().lower(),
        general_redirect_url=env.get(
            "GENERAL_REDIRECT_URL", defaults.general_redirect_url
        ),
        region_redirect_url_template=env.get(
            "REGION_REDIRECT_URL_TEMPLATE", defaults.region_redirect_url_template
        ),
        signup_url=env.get("SIGNUP_URL", defaults.signup_url),
    )


def _parse_timeout(raw: Optional[str]) -> Optional[float]:
    if raw is None or not raw.strip():
        return None
    value = float(raw)
    return value if value > 0 else None


def _parse_workers(raw: Optional[str]) -> int:
    if raw is None or not raw.strip():
        return ServiceConfig.batch_max_workers
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"BATCH_MAX_WORKERS must be an integer, got {raw!r}")


def load_service_config(env: Optional[Mapping[str, str]] = None) -> ServiceConfig:
    """Build a ServiceConfig from environment variables."""
    env = os.environ if env is None else env
    defaults = ServiceConfig()
    climate = env.get("CLIMATE_ZONES_PATH", defaults.climate_zones_path)
    return ServiceConfig(
        smarty_auth_id=env.get("SMARTY_AUTH_ID", "").strip(),
        smarty_auth_token=env.get("SMARTY_AUTH_TOKEN", "").strip(),
        smarty_base_url=env.get("SMARTY_BASE_URL", defaults.smarty_base_url),
        overlay_url=env.get("OVERLAY_SERVICE_URL", defaults.overlay_url),
        upstream_timeout=_parse_timeout(env.get("UPSTREAM_TIMEOUT")),
        tracts_path=env.get("TRACTS_PATH", defaults.tracts_path),
        income_limits_path=env.get("INCOME_LIMITS_PATH", defaults.income_limits_path),
        climate_zones_path=climate or None,
        rate_limit_default=env.get("RATE_LIMIT_DEFAULT", defaults.rate_limit_default),
        rate_limit_validate=env.get("RATE_LIMIT_VALIDATE", defaults.rate_limit_validate),
        batch_max_workers=_parse_workers(env.get("BATCH_MAX_WORKERS")),
    )
