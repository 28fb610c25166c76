"""Pydantic schemas for the structured intelligence the agent produces.

The model answers in camelCase JSON (``healthScore``, ``riskFactors``), so
every field carries its wire alias; results are stored ``by_alias`` so the
persisted job record matches what the model was asked to emit.  Unknown keys
are kept (``extra="allow"``) — the model often adds useful sections.

Only the score is strict.  Everything nested is coerced towards the expected
shape (a bare string where a list belongs becomes a one-item list, a string
stakeholder becomes ``{"name": ...}``) because one sloppy timeline entry must
not cost the whole answer.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

DEFAULT_SCORE = 5

LIST_FIELDS = ("insights", "riskFactors", "opportunitySignals", "recommendedActions")


def coerce_str_list(value: Any) -> list[str]:
    """``None`` → ``[]``, a bare string → one item, non-string items stringified."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, (list, tuple)):
        value = [value]
    items = []
    for item in value:
        if item is None:
            continue
        if isinstance(item, (dict, list)):
            item = json.dumps(item, default=str)
        items.append(item if isinstance(item, str) else str(item))
    return items


def _objects_keyed_by(key: str) -> Callable[[Any], Any]:
    """Wrap bare strings in a list of objects as ``{key: text}``."""

    def _coerce(value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            value = [value]
        return [{key: item} if isinstance(item, str) else item for item in value if item is not None]

    return _coerce


def _object_from_text(key: str) -> Callable[[Any], Any]:
    return lambda value: {key: value} if isinstance(value, str) else value


StrList = Annotated[list[str], BeforeValidator(coerce_str_list)]


class _Intelligence(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    insights: StrList = Field(default_factory=list)
    risk_factors: StrList = Field(default_factory=list, alias="riskFactors")
    opportunity_signals: StrList = Field(default_factory=list, alias="opportunitySignals")
    recommended_actions: StrList = Field(default_factory=list, alias="recommendedActions")
    executive_summary: str | None = Field(default=None, alias="executiveSummary")
    investigation_summary: str | None = Field(default=None, alias="investigationSummary")


class Stakeholder(BaseModel):
    """One person involved in a deal's buying decision."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str | None = None
    title: str | None = None
    email: str | None = None
    role: str | None = "Unknown"
    influence: str | None = "Medium"
    interests: StrList = Field(default_factory=list)
    pain_points: StrList = Field(default_factory=list, alias="painPoints")
    engagement: str | None = "Medium"
    sentiment: str | None = "Unknown"
    key_notes: str | None = Field(default=None, alias="keyNotes")


class TimelineEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    date: str | None = None
    event: str | None = None
    type: str | None = "note"
    significance: str | None = "Medium"


class DealStageAnalysis(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    crm_stage: str | None = Field(default=None, alias="hubspotStage")
    inferred_stage: str | None = Field(default=None, alias="inferredStage")
    stage_match: bool | None = Field(default=None, alias="stageMatch")
    stage_confidence: str | None = Field(default=None, alias="stageConfidence")
    stage_notes: str | None = Field(default=None, alias="stageNotes")


class DealIntelligence(_Intelligence):
    health_score: float = Field(alias="healthScore")
    stakeholders: Annotated[list[Stakeholder], BeforeValidator(_objects_keyed_by("name"))] = Field(
        default_factory=list,
    )
    timeline: Annotated[list[TimelineEvent], BeforeValidator(_objects_keyed_by("event"))] = Field(
        default_factory=list,
    )
    deal_stage_analysis: Annotated[
        DealStageAnalysis | None, BeforeValidator(_object_from_text("stageNotes"))
    ] = Field(default=None, alias="dealStageAnalysis")
    similar_deals_analysis: str | None = Field(default=None, alias="similarDealsAnalysis")


class CompanyIntelligence(_Intelligence):
    health_score: float = Field(alias="healthScore")
    company_overview: str | None = Field(default=None, alias="companyOverview")
    web_presence: str | None = Field(default=None, alias="webPresence")


class ContactIntelligence(_Intelligence):
    engagement_score: float = Field(alias="engagementScore")
    role_analysis: str | None = Field(default=None, alias="roleAnalysis")
    relationship_strength: str | None = Field(default=None, alias="relationshipStrength")


INTELLIGENCE_MODELS: dict[str, type[_Intelligence]] = {
    "deal": DealIntelligence,
    "company": CompanyIntelligence,
    "contact": ContactIntelligence,
}

SCORE_FIELDS: dict[str, str] = {
    "deal": "healthScore",
    "company": "healthScore",
    "contact": "engagementScore",
}


def fallback_intelligence(entity_type: str, raw_text: str, parse_error: str) -> dict[str, Any]:
    """Degraded result used when the model's answer has no usable JSON."""
    return {
        SCORE_FIELDS.get(entity_type, "healthScore"): DEFAULT_SCORE,
        "insights": [],
        "riskFactors": [],
        "opportunitySignals": [],
        "recommendedActions": [],
        "rawAnalysis": raw_text,
        "parseError": parse_error,
    }


def build_job_result(entity_type: str, intelligence: dict[str, Any]) -> dict[str, Any]:
    """Shape the persisted ``result`` field of a completed job.

    The full intelligence is kept under ``intelligence``; the commonly polled
    sections are lifted to the top level.
    """
    score_field = SCORE_FIELDS.get(entity_type, "healthScore")
    result: dict[str, Any] = {
        "intelligence": intelligence,
        score_field: intelligence.get(score_field),
        "insights": intelligence.get("insights", []),
        "riskFactors": intelligence.get("riskFactors", []),
        "opportunitySignals": intelligence.get("opportunitySignals", []),
        "recommendedActions": intelligence.get("recommendedActions", []),
    }
    if entity_type == "deal":
        result["stakeholders"] = intelligence.get("stakeholders", [])
        result["timeline"] = intelligence.get("timeline", [])
        result["dealStageAnalysis"] = intelligence.get("dealStageAnalysis")
        result["executiveSummary"] = intelligence.get("executiveSummary")
    if "parseError" in intelligence:
        result["parseError"] = intelligence["parseError"]
    return result
