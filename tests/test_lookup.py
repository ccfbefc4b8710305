"""Tests for lookup.py: the validate -> overlay -> decide chain."""

from unittest.mock import MagicMock

import pytest

from address_validation import AddressCandidate
from eligibility import Branch
from eligibility_config import EligibilityPolicy
from errors import NoMatchError, UpstreamFormatError
from geo_overlay import OverlayResult
from lookup import evaluate_coordinates, lookup_address
from lookup_trace import LookupTrace, clear_trace, set_trace

CANDIDATE = AddressCandidate("2220 Tulare St, Fresno CA 93721", 36.7378, -119.7871, "93701")


@pytest.fixture
def smarty():
    client = MagicMock()
    client.validate.return_value = CANDIDATE
    return client


@pytest.fixture
def overlay():
    client = MagicMock()
    client.overlay.return_value = OverlayResult(
        raw_tract="6019000100",
        priority_label="Disadvantaged Community",
        county="Fresno",
    )
    return client


def _lookup(address, reference, smarty, overlay, policy=None):
    return lookup_address(
        address,
        reference=reference,
        smarty_client=smarty,
        overlay_client=overlay,
        policy=policy or EligibilityPolicy(),
    )


class TestLookupAddress:
    def test_full_chain(self, reference, smarty, overlay):
        result = _lookup("2220 Tulare St", reference, smarty, overlay)

        smarty.validate.assert_called_once_with("2220 Tulare St")
        overlay.overlay.assert_called_once_with(36.7378, -119.7871)
        assert result.outcome.branch is Branch.ELIGIBLE
        assert result.outcome.county_income.county == "Fresno"

    def test_to_dict_merges_candidate_and_outcome(self, reference, smarty, overlay):
        body = _lookup("2220 Tulare St", reference, smarty, overlay).to_dict()
        assert body["standardized"] == CANDIDATE.standardized_address
        assert body["zipcode"] == "93701"
        assert body["eligible"] is True
        assert body["tract"] == "6019000100"
        assert body["county_income"]["zipcode"] == "93701"

    def test_no_match_stops_before_overlay(self, reference, smarty, overlay):
        smarty.validate.side_effect = NoMatchError("No match found")
        with pytest.raises(NoMatchError):
            _lookup("nowhere", reference, smarty, overlay)
        overlay.overlay.assert_not_called()

    def test_stages_recorded_in_trace(self, reference, smarty, overlay):
        trace = LookupTrace(trace_id="t")
        set_trace(trace)
        try:
            _lookup("2220 Tulare St", reference, smarty, overlay)
        finally:
            clear_trace()
        assert [s.stage_name for s in trace.stages] == ["validate", "overlay", "decide"]

    def test_failed_stage_recorded_in_trace(self, reference, smarty, overlay):
        overlay.overlay.side_effect = UpstreamFormatError("bad")
        trace = LookupTrace(trace_id="t")
        set_trace(trace)
        try:
            with pytest.raises(UpstreamFormatError):
                _lookup("2220 Tulare St", reference, smarty, overlay)
        finally:
            clear_trace()
        assert trace.stages[-1].stage_name == "overlay"
        assert trace.stages[-1].error_class == "UpstreamFormatError"
        assert trace.summary_dict()["final_outcome"] == "error"


class TestEvaluateCoordinates:
    def test_unknown_zip_gives_no_income(self, reference, overlay):
        _, outcome = evaluate_coordinates(
            36.7, -119.8, "99999",
            reference=reference, overlay_client=overlay, policy=EligibilityPolicy(),
        )
        assert outcome.county_income is None
        assert outcome.branch is Branch.ELIGIBLE

    def test_tract_absent_from_table(self, reference):
        client = MagicMock()
        client.overlay.return_value = OverlayResult(raw_tract="06000999999", county="Mono")
        _, outcome = evaluate_coordinates(
            36.7, -119.8, None,
            reference=reference, overlay_client=client, policy=EligibilityPolicy(),
        )
        assert outcome.branch is Branch.TRACT_NOT_FOUND
        assert outcome.region == "Mono"
        assert "6000999999" in outcome.message
