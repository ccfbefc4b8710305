"""
Reference tables for eligibility decisions.

Loaded once at process start and shared read-only by every request:

  - tracts:         11-digit census tract -> TractRecord(region, eligible flag)
  - income limits:  5-digit ZIP -> IncomeRecord(county, limit per household size)
  - climate zones:  5-digit ZIP -> building climate zone (optional table)

Normalization happens here, once, so lookups are plain dict hits:
tract keys are zero-padded to 11 digits, ZIP keys to 5, and income amounts
are cleaned to non-negative integers.  A malformed income cell degrades to 0
instead of failing the load.  A missing or unreadable tract/income file is
fatal (ReferenceDataLoadError); the climate-zone table is optional and only
logs a warning.
"""

import csv
import logging
import math
import os
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from errors import ReferenceDataLoadError

logger = logging.getLogger(__name__)

TRACT_WIDTH = 11
ZIP_WIDTH = 5
HOUSEHOLD_SIZES = tuple(range(1, 9))

# Currency symbols, thousands separators and whitespace.
_INCOME_NOISE = re.compile(r"[$,\s]")


# =============================================================================
# NORMALIZATION HELPERS
# =============================================================================

def pad_tract(tract: Any) -> str:
    """Canonical 11-digit tract key.  Longer values are left untouched."""
    return str(tract).strip().rjust(TRACT_WIDTH, "0")


def display_tract(tract: str) -> str:
    """Drop exactly one leading zero (state FIPS 06 -> 6...)."""
    return tract[1:] if tract.startswith("0") else tract


def pad_zip(zipcode: Any) -> str:
    return str(zipcode).strip().rjust(ZIP_WIDTH, "0")


def clean_income(value: Any) -> int:
    """'$1,234 ' -> 1234.  Empty, unparsable or negative -> 0."""
    if value is None:
        return 0
    text = _INCOME_NOISE.sub("", str(value))
    if not text:
        return 0
    try:
        amount = float(text)
    except ValueError:
        return 0
    if math.isnan(amount) or math.isinf(amount) or amount < 0:
        return 0
    return int(amount)


def _normalize_header(name: Optional[str]) -> str:
    return (name or "").strip().lower()


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class TractRecord:
    """One row of the tract eligibility table."""
    tract: str      # 11-digit, zero-padded
    region: str
    eligible: str   # raw flag from the table, e.g. "TRUE" / "false"

    @property
    def is_eligible(self) -> bool:
        """Only an explicit 'false' (any case) marks a tract ineligible."""
        return self.eligible.strip().lower() != "false"


@dataclass(frozen=True)
class IncomeRecord:
    """Household income limits for one ZIP code."""
    zipcode: str
    county: str
    # Amount for household sizes 1..8, in order.
    limits: Tuple[int, ...] = field(default=(0,) * len(HOUSEHOLD_SIZES))

    def limit_for(self, household_size: int) -> int:
        if household_size not in HOUSEHOLD_SIZES:
            raise ValueError(f"household size must be 1-8, got {household_size}")
        return self.limits[household_size - 1]

    def income_by_household(self) -> Dict[str, int]:
        """Ordered {"1": amount, ..., "8": amount} view for JSON output."""
        return {str(size): amount for size, amount in zip(HOUSEHOLD_SIZES, self.limits)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zipcode": self.zipcode,
            "county": self.county,
            "income_by_household": self.income_by_household(),
        }


@dataclass(frozen=True)
class ReferenceData:
    """Immutable bundle of every lookup table, built by load_reference_data()."""
    tracts: Mapping[str, TractRecord]
    income_limits: Mapping[str, IncomeRecord]
    climate_zones: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def find_tract(self, tract: Optional[str]) -> Optional[TractRecord]:
        if not tract:
            return None
        return self.tracts.get(pad_tract(tract))

    def find_income(self, zipcode: Optional[str]) -> Optional[IncomeRecord]:
        if not zipcode:
            return None
        return self.income_limits.get(pad_zip(zipcode))

    def climate_zone(self, zipcode: Optional[str]) -> Optional[str]:
        if not zipcode:
            return None
        return self.climate_zones.get(pad_zip(zipcode))

    def sizes(self) -> Dict[str, int]:
        return {
            "tracts": len(self.tracts),
            "income_limits": len(self.income_limits),
            "climate_zones": len(self.climate_zones),
        }


# =============================================================================
# FILE READERS
# =============================================================================

def _read_csv_rows(path: str) -> Tuple[Tuple[str, ...], list]:
    """Read a CSV with a header row.  Headers are lower-cased and stripped."""
    try:
        with open(path, newline="", encoding="utf-8-sig") as f:
            reader = csv.DictReader(f)
            fieldnames = tuple(reader.fieldnames or ())
            rows = [
                {_normalize_header(k): (v or "") for k, v in row.items() if k is not None}
                for row in reader
            ]
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise ReferenceDataLoadError(f"Failed to read {path}: {e}") from e
    return tuple(_normalize_header(h) for h in fieldnames), rows


def _require_columns(path: str, headers: Iterable[str], required: Iterable[str]) -> None:
    missing = [c for c in required if c not in headers]
    if missing:
        raise ReferenceDataLoadError(
            f"{path} is missing required column(s): {', '.join(missing)}"
        )


def load_tracts(path: str) -> Mapping[str, TractRecord]:
    """Load the tract eligibility CSV (columns: tract, region, eligible)."""
    headers, rows = _read_csv_rows(path)
    _require_columns(path, headers, ("tract", "region", "eligible"))

    tracts: Dict[str, TractRecord] = {}
    duplicates = 0
    for row in rows:
        raw = row["tract"].strip()
        if not raw:
            continue
        key = pad_tract(raw)
        if key in tracts:
            duplicates += 1
            continue
        tracts[key] = TractRecord(
            tract=key,
            region=row["region"].strip(),
            eligible=row["eligible"].strip(),
        )

    if duplicates:
        logger.warning("%s: ignored %d duplicate tract row(s)", path, duplicates)
    logger.info("Loaded %d tract records from %s", len(tracts), path)
    return MappingProxyType(tracts)


def load_income_limits(path: str) -> Mapping[str, IncomeRecord]:
    """Load the ZIP income-limit CSV (columns: zipcode|zip, county, 1..8)."""
    headers, rows = _read_csv_rows(path)
    zip_col = "zipcode" if "zipcode" in headers else "zip"
    _require_columns(path, headers, (zip_col, "county"))

    limits: Dict[str, IncomeRecord] = {}
    for row in rows:
        raw_zip = row[zip_col].strip()
        if not raw_zip:
            continue
        key = pad_zip(raw_zip)
        if key in limits:
            continue
        limits[key] = IncomeRecord(
            zipcode=key,
            county=row["county"].strip(),
            limits=tuple(clean_income(row.get(str(size))) for size in HOUSEHOLD_SIZES),
        )

    logger.info("Loaded %d ZIP income-limit records from %s", len(limits), path)
    return MappingProxyType(limits)


def _climate_rows_from_xlsx(path: str) -> list:
    from openpyxl import load_workbook

    workbook = load_workbook(path, read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = [_normalize_header(str(h) if h is not None else "") for h in next(rows, ())]
        return [
            {h: ("" if v is None else v) for h, v in zip(header, values)}
            for values in rows
        ]
    finally:
        workbook.close()


def load_climate_zones(path: Optional[str]) -> Mapping[str, str]:
    """Load the optional ZIP -> building climate zone table (CSV or XLSX).

    Never raises: a missing or unreadable file disables the lookup.
    """
    empty: Mapping[str, str] = MappingProxyType({})
    if not path:
        return empty
    if not os.path.exists(path):
        logger.warning(
            "Climate zone table not found at %s; ZIP-based climate lookup disabled.",
            path,
        )
        return empty

    try:
        if path.lower().endswith((".xlsx", ".xlsm")):
            rows = _climate_rows_from_xlsx(path)
        else:
            _, rows = _read_csv_rows(path)
    except Exception:
        logger.warning(
            "Failed to load climate zone table %s; continuing without it.",
            path, exc_info=True,
        )
        return empty

    zones: Dict[str, str] = {}
    for row in rows:
        raw_zip = row.get("zip code", row.get("zipcode", ""))
        zone = row.get("building cz", row.get("climate zone", ""))
        if raw_zip in ("", None) or zone in ("", None):
            continue
        if isinstance(raw_zip, float) and raw_zip.is_integer():
            raw_zip = int(raw_zip)
        zones[pad_zip(raw_zip)] = str(zone).strip()

    logger.info("Loaded %d ZIP -> climate zone records from %s", len(zones), path)
    return MappingProxyType(zones)


def load_reference_data(
    tracts_path: str,
    income_limits_path: str,
    climate_zones_path: Optional[str] = None,
) -> ReferenceData:
    """Load every reference table.  Raises ReferenceDataLoadError on fatal gaps."""
    return ReferenceData(
        tracts=load_tracts(tracts_path),
        income_limits=load_income_limits(income_limits_path),
        climate_zones=load_climate_zones(climate_zones_path),
    )
