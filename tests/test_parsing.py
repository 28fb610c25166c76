"""Tests for structured-result extraction from model text."""

from __future__ import annotations

import pytest

from sales_intel.parsing import extract_intelligence
from sales_intel.results import DEFAULT_SCORE, build_job_result


class TestFencedTier:
    def test_fenced_json_block(self):
        text = 'Here is my analysis:\n```json\n{"healthScore": 7, "insights": ["steady usage"]}\n```'
        outcome = extract_intelligence("deal", text)
        assert outcome.tier == "fenced"
        assert outcome.intelligence["healthScore"] == 7
        assert outcome.intelligence["insights"] == ["steady usage"]
        assert outcome.intelligence["riskFactors"] == []

    def test_unlabelled_fence(self):
        outcome = extract_intelligence("contact", '```\n{"engagementScore": 4}\n```')
        assert outcome.tier == "fenced"
        assert outcome.intelligence["engagementScore"] == 4

    def test_extra_sections_kept(self):
        text = '```json\n{"healthScore": 6, "competitors": ["Globex"]}\n```'
        assert extract_intelligence("company", text).intelligence["competitors"] == ["Globex"]


class TestScanTier:
    def test_loose_object_in_prose(self):
        text = 'I think {"note": "ignore me"} but overall {"healthScore": 3, "riskFactors": ["churn"]} done'
        outcome = extract_intelligence("deal", text)
        assert outcome.tier == "scan"
        assert outcome.intelligence["riskFactors"] == ["churn"]

    def test_invalid_fence_falls_through_to_scan(self):
        text = '```json\n{"healthScore": \n```\nAnswer: {"healthScore": 8}'
        outcome = extract_intelligence("deal", text)
        assert outcome.tier == "scan"
        assert outcome.intelligence["healthScore"] == 8


class TestFallbackTier:
    def test_plain_text_wrapped(self):
        outcome = extract_intelligence("deal", "The deal looks healthy overall.")
        assert outcome.tier == "fallback"
        assert outcome.intelligence["healthScore"] == DEFAULT_SCORE
        assert outcome.intelligence["rawAnalysis"] == "The deal looks healthy overall."
        assert outcome.intelligence["parseError"]

    def test_schema_violation_falls_back(self):
        outcome = extract_intelligence("deal", '```json\n{"healthScore": "very good"}\n```')
        assert outcome.tier == "fallback"

    def test_contact_fallback_uses_engagement_score(self):
        outcome = extract_intelligence("contact", "no json")
        assert outcome.intelligence["engagementScore"] == DEFAULT_SCORE

    def test_fallback_can_be_disabled(self):
        outcome = extract_intelligence("deal", "still thinking", allow_fallback=False)
        assert outcome.intelligence is None
        assert outcome.tier == "none"

    def test_none_text(self):
        assert extract_intelligence("company", None).tier == "fallback"

    def test_unknown_entity_type(self):
        with pytest.raises(ValueError):
            extract_intelligence("ticket", "{}")


class TestNestedShapeDeviations:
    def test_timeline_entry_without_date(self):
        text = (
            '```json\n{"healthScore": 7, "insights": ["steady usage"], '
            '"timeline": [{"date": null, "event": "Kickoff call"}]}\n```'
        )
        outcome = extract_intelligence("deal", text)
        assert outcome.tier == "fenced"
        assert outcome.intelligence["healthScore"] == 7
        assert outcome.intelligence["timeline"][0]["event"] == "Kickoff call"
        assert outcome.intelligence["timeline"][0]["date"] is None
        assert "parseError" not in outcome.intelligence

    def test_string_where_list_expected(self):
        text = '{"healthScore": 8, "stakeholders": [{"name": "Bo", "interests": "pricing"}]}'
        outcome = extract_intelligence("deal", text)
        assert outcome.tier == "scan"
        assert outcome.intelligence["healthScore"] == 8
        assert outcome.intelligence["stakeholders"][0]["interests"] == ["pricing"]

    def test_bare_strings_wrapped(self):
        text = (
            '```json\n{"healthScore": 6, "riskFactors": "Budget freeze", '
            '"stakeholders": ["Ada Lovelace (CFO)"], "timeline": ["Demo held"], '
            '"dealStageAnalysis": "Stage looks right"}\n```'
        )
        intelligence = extract_intelligence("deal", text).intelligence
        assert intelligence["riskFactors"] == ["Budget freeze"]
        assert intelligence["stakeholders"][0]["name"] == "Ada Lovelace (CFO)"
        assert intelligence["timeline"][0]["event"] == "Demo held"
        assert intelligence["dealStageAnalysis"]["stageNotes"] == "Stage looks right"

    def test_unvalidatable_sections_kept_as_sent(self):
        text = (
            '```json\n{"healthScore": "6", "insights": [{"text": "renewal due"}], '
            '"stakeholders": [{"name": "Bo", "influence": ["High"]}]}\n```'
        )
        outcome = extract_intelligence("deal", text)
        assert outcome.tier == "fenced"
        assert outcome.intelligence["healthScore"] == 6
        assert outcome.intelligence["stakeholders"] == [{"name": "Bo", "influence": ["High"]}]
        assert outcome.intelligence["insights"] == ['{"text": "renewal due"}']
        assert outcome.intelligence["riskFactors"] == []

    def test_missing_score_still_rejected(self):
        outcome = extract_intelligence("contact", '```json\n{"insights": ["x"], "timeline": 3}\n```')
        assert outcome.tier == "fallback"


class TestBuildJobResult:
    def test_deal_result_lifts_sections(self):
        intelligence = {
            "healthScore": 7, "insights": ["a"], "riskFactors": [], "opportunitySignals": ["b"],
            "recommendedActions": [], "stakeholders": [{"name": "Ada"}], "timeline": [],
        }
        result = build_job_result("deal", intelligence)
        assert result["intelligence"] is intelligence
        assert result["healthScore"] == 7
        assert result["stakeholders"] == [{"name": "Ada"}]
        assert "parseError" not in result

    def test_parse_error_propagated(self):
        result = build_job_result("company", {"healthScore": 5, "parseError": "bad json"})
        assert result["parseError"] == "bad json"
        assert "stakeholders" not in result
