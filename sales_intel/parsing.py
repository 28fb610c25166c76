"""Coerce a free-text model answer into a typed intelligence dict.

Three tiers, each one logged so degraded results are diagnosable:

1. **fenced** — a fenced code block (```json … ```) decoded and validated
   against the entity type's Pydantic schema.
2. **scan** — every ``{`` in the text is tried as the start of a JSON object
   (``json.JSONDecoder.raw_decode`` does the brace matching); the first
   object carrying a numeric score field wins.
3. **fallback** — the raw text wrapped with the default score and a
   ``parseError`` marker.

In the first two tiers an object whose nested sections miss the schema is
kept as sent, with list sections coerced; only the score decides acceptance.

``extract_intelligence`` never raises.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from sales_intel.results import (
    INTELLIGENCE_MODELS,
    LIST_FIELDS,
    SCORE_FIELDS,
    coerce_str_list,
    fallback_intelligence,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class ParseOutcome:
    intelligence: dict[str, Any] | None
    tier: str  # "fenced" | "scan" | "fallback" | "none"
    error: str | None = None


def _validate(entity_type: str, candidate: Any) -> dict[str, Any]:
    """Schema-validate *candidate*; on nested deviations keep it as sent.

    Only a missing or non-numeric score rejects an object.
    """
    if not isinstance(candidate, dict):
        raise ValueError(f"expected a JSON object, got {type(candidate).__name__}")
    model = INTELLIGENCE_MODELS[entity_type]
    try:
        return model.model_validate(candidate).model_dump(by_alias=True, mode="json")
    except ValidationError as exc:
        return _top_level_only(entity_type, candidate, exc)


def _top_level_only(entity_type: str, candidate: dict[str, Any], exc: ValidationError) -> dict[str, Any]:
    score_field = SCORE_FIELDS[entity_type]
    score = candidate.get(score_field)
    if isinstance(score, bool):
        score = None
    try:
        score = float(score)
        if not math.isfinite(score):
            raise ValueError(score)
    except (TypeError, ValueError):
        raise ValueError(f"{score_field} is missing or not a number: {score!r}") from exc

    logger.warning(
        "Keeping %s intelligence with %d schema deviation(s): %s",
        entity_type, exc.error_count(), "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()[:3]
        ),
    )
    intelligence = dict(candidate)
    intelligence[score_field] = score
    for key in LIST_FIELDS:
        intelligence[key] = coerce_str_list(intelligence.get(key))
    return intelligence


def _try_fenced(entity_type: str, text: str) -> tuple[dict[str, Any] | None, str | None]:
    last_error = None
    for match in _FENCE_RE.finditer(text):
        body = match.group(1).strip()
        if not body.startswith("{"):
            continue
        try:
            return _validate(entity_type, json.loads(body)), None
        except (ValueError, ValidationError) as exc:
            last_error = str(exc)
    return None, last_error


def _try_scan(entity_type: str, text: str) -> tuple[dict[str, Any] | None, str | None]:
    score_field = SCORE_FIELDS[entity_type]
    last_error = None
    idx = text.find("{")
    while idx != -1:
        try:
            candidate, _ = _decoder.raw_decode(text, idx)
        except ValueError:
            candidate = None
        if isinstance(candidate, dict) and score_field in candidate:
            try:
                return _validate(entity_type, candidate), None
            except (ValueError, ValidationError) as exc:
                last_error = str(exc)
        idx = text.find("{", idx + 1)
    return None, last_error


def extract_intelligence(
    entity_type: str,
    text: str,
    *,
    allow_fallback: bool = True,
) -> ParseOutcome:
    """Parse *text* into the intelligence schema for *entity_type*.

    With ``allow_fallback=False`` an unparseable answer returns
    ``ParseOutcome(None, "none")`` instead of a degraded result; the agent
    uses this for intermediate turns where a missing JSON block is normal.
    """
    text = text or ""
    if entity_type not in INTELLIGENCE_MODELS:
        raise ValueError(f"Unknown entity type: {entity_type}")

    intelligence, fenced_error = _try_fenced(entity_type, text)
    if intelligence is not None:
        logger.debug("Parsed %s intelligence from fenced JSON block", entity_type)
        return ParseOutcome(intelligence, "fenced")

    intelligence, scan_error = _try_scan(entity_type, text)
    if intelligence is not None:
        logger.info("Parsed %s intelligence via brace scan (no valid fenced block)", entity_type)
        return ParseOutcome(intelligence, "scan")

    error = scan_error or fenced_error or "Could not parse structured JSON from response"
    if not allow_fallback:
        return ParseOutcome(None, "none", error)

    logger.warning("Falling back to raw-text %s intelligence: %s", entity_type, error)
    return ParseOutcome(fallback_intelligence(entity_type, text, error), "fallback", error)
