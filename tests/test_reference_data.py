"""Tests for reference_data.py: table loading and key normalization."""

import os

import pytest

from errors import ReferenceDataLoadError
from reference_data import (
    IncomeRecord,
    TractRecord,
    clean_income,
    display_tract,
    load_climate_zones,
    load_income_limits,
    load_reference_data,
    load_tracts,
    pad_tract,
    pad_zip,
)

DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")


def _write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return str(path)


# =========================================================================
# Normalization helpers
# =========================================================================

class TestPadding:
    def test_pad_tract_restores_leading_zero(self):
        assert pad_tract("6019001000") == "06019001000"

    def test_pad_tract_is_idempotent(self):
        once = pad_tract("6019001000")
        assert pad_tract(once) == once

    def test_pad_tract_accepts_int(self):
        assert pad_tract(6019001000) == "06019001000"

    def test_display_tract_drops_one_zero(self):
        assert display_tract("06019001000") == "6019001000"
        assert display_tract("00123456789") == "0123456789"

    def test_display_tract_without_leading_zero(self):
        assert display_tract("16019001000") == "16019001000"

    def test_pad_zip(self):
        assert pad_zip("1234") == "01234"
        assert pad_zip(93701) == "93701"
        assert pad_zip(pad_zip("501")) == "00501"


class TestCleanIncome:
    @pytest.mark.parametrize("raw,expected", [
        ("$58,450", 58450),
        (" 1,000 ", 1000),
        ("2000", 2000),
        ("123.9", 123),
        (4500, 4500),
    ])
    def test_parses_currency(self, raw, expected):
        assert clean_income(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "n/a", "-5", "nan", "inf"])
    def test_bad_values_become_zero(self, raw):
        assert clean_income(raw) == 0


# =========================================================================
# Records
# =========================================================================

class TestTractRecord:
    @pytest.mark.parametrize("flag", ["TRUE", "true", "yes", "", "1"])
    def test_anything_but_false_is_eligible(self, flag):
        assert TractRecord("06019000100", "Central", flag).is_eligible is True

    @pytest.mark.parametrize("flag", ["FALSE", "false", " False "])
    def test_false_is_ineligible(self, flag):
        assert TractRecord("06019000100", "Central", flag).is_eligible is False


class TestIncomeRecord:
    def test_income_by_household_has_eight_ordered_keys(self):
        rec = IncomeRecord("93701", "Fresno", tuple(range(10, 90, 10)))
        view = rec.income_by_household()
        assert list(view.keys()) == [str(i) for i in range(1, 9)]
        assert view["1"] == 10
        assert view["8"] == 80

    def test_limit_for_rejects_out_of_range(self):
        rec = IncomeRecord("93701", "Fresno")
        with pytest.raises(ValueError):
            rec.limit_for(9)

    def test_to_dict(self):
        rec = IncomeRecord("93701", "Fresno", (1, 2, 3, 4, 5, 6, 7, 8))
        assert rec.to_dict() == {
            "zipcode": "93701",
            "county": "Fresno",
            "income_by_household": {str(i): i for i in range(1, 9)},
        }


# =========================================================================
# Loaders
# =========================================================================

class TestLoadTracts:
    def test_keys_are_padded(self):
        tracts = load_tracts(os.path.join(DATA_DIR, "tracts.csv"))
        assert "06019001000" in tracts
        assert "6019001000" not in tracts
        assert tracts["06019001000"].eligible == "FALSE"

    def test_first_duplicate_wins(self):
        tracts = load_tracts(os.path.join(DATA_DIR, "tracts.csv"))
        assert tracts["06019000100"].region == "Central"
        assert tracts["06019000100"].is_eligible is True

    def test_table_is_read_only(self):
        tracts = load_tracts(os.path.join(DATA_DIR, "tracts.csv"))
        with pytest.raises(TypeError):
            tracts["99999999999"] = None

    def test_header_case_is_ignored(self, tmp_path):
        path = _write(tmp_path, "t.csv", "Tract,Region,Eligible\n6019000100,Central,TRUE\n")
        assert "06019000100" in load_tracts(path)

    def test_missing_file_is_fatal(self, tmp_path):
        with pytest.raises(ReferenceDataLoadError):
            load_tracts(str(tmp_path / "nope.csv"))

    def test_missing_column_is_fatal(self, tmp_path):
        path = _write(tmp_path, "t.csv", "tract,region\n6019000100,Central\n")
        with pytest.raises(ReferenceDataLoadError, match="eligible"):
            load_tracts(path)


class TestLoadIncomeLimits:
    def test_amounts_cleaned(self):
        limits = load_income_limits(os.path.join(DATA_DIR, "income_limits.csv"))
        fresno = limits["93701"]
        assert fresno.county == "Fresno"
        assert fresno.limit_for(1) == 58450
        assert fresno.limit_for(8) == 110200

    def test_malformed_cells_degrade_to_zero(self):
        limits = load_income_limits(os.path.join(DATA_DIR, "income_limits.csv"))
        rec = limits["01234"]
        assert rec.limits == (1000, 0, 0, 0, 2000, 3000, 4000, 5000)

    def test_zip_column_alias(self, tmp_path):
        path = _write(tmp_path, "i.csv", "zip,county,1\n93701,Fresno,100\n")
        limits = load_income_limits(path)
        assert limits["93701"].limit_for(1) == 100
        assert limits["93701"].limit_for(2) == 0

    def test_missing_county_column_is_fatal(self, tmp_path):
        path = _write(tmp_path, "i.csv", "zipcode,1\n93701,100\n")
        with pytest.raises(ReferenceDataLoadError):
            load_income_limits(path)


class TestLoadClimateZones:
    def test_csv(self):
        zones = load_climate_zones(os.path.join(DATA_DIR, "climate_zones.csv"))
        assert zones["93701"] == "13"
        assert zones["01234"] == "3"

    def test_missing_file_is_empty_not_fatal(self, tmp_path):
        assert dict(load_climate_zones(str(tmp_path / "missing.xlsx"))) == {}

    def test_none_path_is_empty(self):
        assert dict(load_climate_zones(None)) == {}

    def test_xlsx(self, tmp_path):
        openpyxl = pytest.importorskip("openpyxl")
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.append(["Zip Code", "Building CZ"])
        ws.append([93701, 13])
        ws.append([501, 3])
        path = str(tmp_path / "cz.xlsx")
        wb.save(path)

        zones = load_climate_zones(path)
        assert zones["93701"] == "13"
        assert zones["00501"] == "3"

    def test_corrupt_xlsx_is_empty_not_fatal(self, tmp_path):
        path = tmp_path / "bad.xlsx"
        path.write_bytes(b"not a zip archive")
        assert dict(load_climate_zones(str(path))) == {}


class TestReferenceData:
    def test_find_tract_pads_input(self, reference):
        assert reference.find_tract("6019001000").tract == "06019001000"
        assert reference.find_tract(None) is None
        assert reference.find_tract("") is None

    def test_find_income_pads_input(self, reference):
        assert reference.find_income("1234").county == "Test County"
        assert reference.find_income("99999") is None
        assert reference.find_income(None) is None

    def test_climate_zone(self, reference):
        assert reference.climate_zone("93701") == "13"
        assert reference.climate_zone("99999") is None

    def test_sizes(self, reference):
        assert reference.sizes() == {"tracts": 5, "income_limits": 2, "climate_zones": 2}

    def test_optional_climate_table(self):
        data = load_reference_data(
            os.path.join(DATA_DIR, "tracts.csv"),
            os.path.join(DATA_DIR, "income_limits.csv"),
        )
        assert data.sizes()["climate_zones"] == 0
