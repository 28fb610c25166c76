"""Change detection between two completed analyses of the same entity.

List items are compared loosely, since the model rarely phrases the same
risk twice in exactly the same words: two items match when their normalized
text is equal, one contains the other, or more than 60% of the shorter
item's words appear in the other.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

_SCORE_KEYS = ("dealScore", "healthScore", "engagementScore")
_NON_WORD_RE = re.compile(r"[^a-z0-9\s]")
WORD_OVERLAP_THRESHOLD = 0.6


@dataclass
class ChangeDetection:
    has_changes: bool = False
    score_change: float | None = None
    previous_score: float | None = None
    current_score: float | None = None
    changed_fields: list[str] = field(default_factory=list)
    new_insights: list[str] = field(default_factory=list)
    new_risks: list[str] = field(default_factory=list)
    resolved_risks: list[str] = field(default_factory=list)
    new_opportunities: list[str] = field(default_factory=list)
    resolved_opportunities: list[str] = field(default_factory=list)
    summary: str = ""
    previous_job_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Camel-cased record as stored on the job."""
        return {
            "hasChanges": self.has_changes,
            "scoreChange": self.score_change,
            "previousScore": self.previous_score,
            "currentScore": self.current_score,
            "changedFields": list(self.changed_fields),
            "newInsights": list(self.new_insights),
            "newRisks": list(self.new_risks),
            "resolvedRisks": list(self.resolved_risks),
            "newOpportunities": list(self.new_opportunities),
            "resolvedOpportunities": list(self.resolved_opportunities),
            "summary": self.summary,
            "previousJobId": self.previous_job_id,
        }


def extract_score(result: dict[str, Any] | None) -> float | None:
    """The primary score of a job result, top level first, then ``intelligence``."""
    if not result:
        return None
    for source in (result, result.get("intelligence") or {}):
        for key in _SCORE_KEYS:
            value = source.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
    return None


def _normalize(text: str) -> str:
    return _NON_WORD_RE.sub("", str(text).lower()).strip()


def is_similar(a: str, b: str) -> bool:
    norm_a, norm_b = _normalize(a), _normalize(b)
    if norm_a == norm_b:
        return True
    if not norm_a or not norm_b:
        return False
    if norm_a in norm_b or norm_b in norm_a:
        return True
    words_a, words_b = set(norm_a.split()), set(norm_b.split())
    overlap = len(words_a & words_b) / min(len(words_a), len(words_b))
    return overlap > WORD_OVERLAP_THRESHOLD


def find_new_items(current: list[Any] | None, previous: list[Any] | None) -> list[str]:
    """Items of *current* with no similar counterpart in *previous*."""
    previous = [str(p) for p in previous or []]
    return [
        str(item) for item in current or []
        if not any(is_similar(p, str(item)) for p in previous)
    ]


def _items(result: dict[str, Any], key: str) -> list[Any]:
    intelligence = result.get("intelligence") or {}
    value = intelligence.get(key) or result.get(key) or []
    return value if isinstance(value, list) else []


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def summarize(changes: ChangeDetection) -> str:
    if not changes.has_changes:
        return "No significant changes detected since the last analysis."

    parts = []
    if changes.score_change:
        direction = "improved" if changes.score_change > 0 else "declined"
        parts.append(
            f"Score {direction} by {abs(changes.score_change):g} points "
            f"({changes.previous_score:g} → {changes.current_score:g})"
        )
    counts = (
        (len(changes.new_insights), "new insight", "new insights", "discovered"),
        (len(changes.new_risks), "new risk", "new risks", "identified"),
        (len(changes.resolved_risks), "risk", "risks", "resolved"),
        (len(changes.new_opportunities), "new opportunity", "new opportunities", "found"),
        (len(changes.resolved_opportunities), "opportunity", "opportunities", "addressed"),
    )
    for count, singular, plural, verb in counts:
        if count:
            parts.append(f"{count} {_plural(count, singular, plural)} {verb}")
    if not parts:
        return "Recommended actions updated since the last analysis."
    return ". ".join(parts) + "."


def detect_changes(
    current: dict[str, Any],
    previous: dict[str, Any] | None,
    *,
    previous_job_id: str | None = None,
) -> ChangeDetection | None:
    """Diff *current* against *previous*; ``None`` when there is nothing to compare."""
    if not previous:
        return None

    changes = ChangeDetection(previous_job_id=previous_job_id)

    current_score, previous_score = extract_score(current), extract_score(previous)
    if current_score is not None and previous_score is not None:
        changes.previous_score = previous_score
        changes.current_score = current_score
        changes.score_change = current_score - previous_score
        if changes.score_change != 0:
            changes.changed_fields.append("score")

    changes.new_insights = find_new_items(_items(current, "insights"), _items(previous, "insights"))
    if changes.new_insights:
        changes.changed_fields.append("insights")

    current_risks, previous_risks = _items(current, "riskFactors"), _items(previous, "riskFactors")
    changes.new_risks = find_new_items(current_risks, previous_risks)
    changes.resolved_risks = find_new_items(previous_risks, current_risks)
    if changes.new_risks or changes.resolved_risks:
        changes.changed_fields.append("riskFactors")

    current_opps = _items(current, "opportunitySignals")
    previous_opps = _items(previous, "opportunitySignals")
    changes.new_opportunities = find_new_items(current_opps, previous_opps)
    changes.resolved_opportunities = find_new_items(previous_opps, current_opps)
    if changes.new_opportunities or changes.resolved_opportunities:
        changes.changed_fields.append("opportunitySignals")

    current_actions = _items(current, "recommendedActions")
    previous_actions = _items(previous, "recommendedActions")
    if find_new_items(current_actions, previous_actions) or find_new_items(previous_actions, current_actions):
        changes.changed_fields.append("recommendedActions")

    changes.has_changes = bool(changes.changed_fields)
    changes.summary = summarize(changes)
    return changes
