#!/usr/bin/env python3
"""
Run eligibility lookups for every address in a CSV file, offline from the
web service.

Input: a CSV with an 'address' column (other columns are ignored).
Output: one row per non-blank input address, with the same columns the
/api/upload-csv endpoint returns.  Rows that fail carry only InputAddress
and Error.

Reads the same environment variables as the service (SMARTY_AUTH_ID,
SMARTY_AUTH_TOKEN, TRACTS_PATH, INCOME_LIMITS_PATH, CLIMATE_ZONES_PATH, ...),
loading .env if present.

Usage:
    python scripts/batch_lookup.py addresses.csv
    python scripts/batch_lookup.py addresses.csv -o batch_results.csv --workers 4
"""

import argparse
import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from address_validation import SmartyClient
from batch import process_batch, read_addresses_csv, rows_to_csv
from eligibility_config import load_policy, load_service_config
from errors import EligibilityLookupError
from geo_overlay import GeoOverlayClient
from lookup import lookup_address
from reference_data import load_reference_data

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)


def run(input_path: str, output_path: str, workers: Optional[int] = None) -> int:
    """Process *input_path* into *output_path*.  Returns a process exit code.

    *workers* defaults to BATCH_MAX_WORKERS from the environment.
    """
    config = load_service_config()
    policy = load_policy()

    missing = config.missing_keys()
    if missing:
        logger.error("Missing required env vars: %s", ", ".join(missing))
        return 1

    try:
        reference = load_reference_data(
            config.tracts_path, config.income_limits_path, config.climate_zones_path,
        )
        with open(input_path, encoding="utf-8-sig", newline="") as f:
            addresses = read_addresses_csv(f.read())
    except (OSError, EligibilityLookupError) as e:
        logger.error("%s", e)
        return 1

    smarty = SmartyClient(
        config.smarty_auth_id,
        config.smarty_auth_token,
        base_url=config.smarty_base_url,
        timeout=config.upstream_timeout,
    )
    overlay = GeoOverlayClient(config.overlay_url, timeout=config.upstream_timeout)

    def _lookup_one(address):
        return lookup_address(
            address,
            reference=reference,
            smarty_client=smarty,
            overlay_client=overlay,
            policy=policy,
        )

    rows = process_batch(
        addresses, _lookup_one, reference,
        max_workers=workers or config.batch_max_workers,
        batch_id=os.path.basename(input_path),
    )

    with open(output_path, "w", encoding="utf-8", newline="") as f:
        f.write(rows_to_csv(rows))

    failed = sum(1 for r in rows if not r.ok)
    logger.info("Wrote %d row(s) to %s (%d failed)", len(rows), output_path, failed)
    return 0


if __name__ == "__main__":
    load_dotenv()
    parser = argparse.ArgumentParser(description="Batch eligibility lookup over a CSV of addresses")
    parser.add_argument("input", help="CSV file with an 'address' column.")
    parser.add_argument(
        "-o", "--output", type=str, default="batch_results.csv",
        help="Output CSV path (default: batch_results.csv).",
    )
    parser.add_argument(
        "--workers", type=int, default=None,
        help="Concurrent lookups (default: BATCH_MAX_WORKERS, else 1 = sequential).",
    )
    args = parser.parse_args()
    sys.exit(run(args.input, args.output, args.workers))
