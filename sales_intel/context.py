"""Point-in-time entity snapshots handed to the agent loop.

A job never gives the agent a live CRM reference: the runner resolves the
entity once, freezes it into an :class:`EntityContext`, and every prompt in
the run is rendered from that snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from sales_intel.services.hubspot_client import HubSpotAPIError, HubSpotClient

logger = logging.getLogger(__name__)

EntityType = Literal["deal", "company", "contact"]
ENTITY_TYPES: tuple[str, ...] = ("deal", "company", "contact")

_ID_KEYS = ("id", "entity_id", "dealId", "companyId", "contactId")
_NAME_KEYS = ("name", "entity_name", "dealName", "fullName")


@dataclass(frozen=True)
class EntityContext:
    """Immutable snapshot of one CRM entity.

    ``fields`` holds the human-facing facts (label → value) rendered into the
    initial prompt; ``properties`` keeps the raw CRM properties for reference.
    """

    entity_type: str
    entity_id: str
    name: str
    fields: dict[str, Any] = field(default_factory=dict)
    properties: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, entity_type: str, data: Mapping[str, Any]) -> EntityContext:
        """Build a snapshot from a caller-supplied dict such as
        ``{"id": "D-1", "name": "Acme Renewal", "amount": 50000}``."""
        entity_id = next((str(data[k]) for k in _ID_KEYS if data.get(k) is not None), "")
        name = next((str(data[k]) for k in _NAME_KEYS if data.get(k)), entity_id)
        facts = {
            k: v for k, v in data.items()
            if k not in _ID_KEYS and k not in _NAME_KEYS and k != "properties" and v is not None
        }
        return cls(
            entity_type=entity_type,
            entity_id=entity_id,
            name=name,
            fields=facts,
            properties=dict(data.get("properties") or {}),
        )

    def prompt_lines(self) -> list[str]:
        """Markdown bullet lines describing the entity."""
        label = self.entity_type.capitalize()
        lines = [
            f"- **{label} ID**: {self.entity_id}",
            f"- **{label} Name**: {self.name}",
        ]
        for key, value in self.fields.items():
            if value in (None, ""):
                continue
            if key == "amount" and isinstance(value, int | float):
                value = f"${value:,.0f}"
            lines.append(f"- **{_humanize(key)}**: {value}")
        return lines


def _humanize(key: str) -> str:
    out = []
    for ch in key.replace("_", " "):
        if ch.isupper() and out and out[-1] != " ":
            out.append(" ")
        out.append(ch)
    return "".join(out).strip().title()


def _to_float(raw: Any) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


def _first_association_id(data: dict[str, Any], to_type: str) -> str | None:
    results = data.get("associations", {}).get(to_type, {}).get("results", [])
    return str(results[0]["id"]) if results else None


class EntityContextResolver:
    """Fetches the current state of a deal, company or contact from HubSpot."""

    def __init__(self, client: HubSpotClient) -> None:
        self._client = client

    def resolve(self, entity_type: str, entity_id: str, fallback_name: str = "") -> EntityContext:
        if entity_type == "deal":
            return self._resolve_deal(entity_id, fallback_name)
        if entity_type == "company":
            return self._resolve_company(entity_id, fallback_name)
        if entity_type == "contact":
            return self._resolve_contact(entity_id, fallback_name)
        raise ValueError(f"Unknown entity type: {entity_type}")

    def _resolve_deal(self, deal_id: str, fallback_name: str) -> EntityContext:
        data = self._client.get_object("deals", deal_id, associations=["companies"])
        props = data.get("properties") or {}
        stage = props.get("dealstage") or ""
        pipeline = props.get("pipeline") or ""
        stage_label, pipeline_label = stage, pipeline
        if pipeline:
            try:
                pipeline_data = self._client.get_pipeline(pipeline)
                pipeline_label = pipeline_data.get("label") or pipeline
                stage_label = next(
                    (s.get("label") for s in pipeline_data.get("stages", []) if s.get("id") == stage),
                    stage,
                )
            except HubSpotAPIError as exc:
                logger.warning("Could not load pipeline %s labels: %s", pipeline, exc)

        return EntityContext(
            entity_type="deal",
            entity_id=deal_id,
            name=props.get("dealname") or fallback_name or "Unnamed Deal",
            fields={
                "amount": _to_float(props.get("amount")),
                "stage": stage_label or "Unknown",
                "pipeline": pipeline_label or "Unknown",
                "close_date": props.get("closedate") or "Not set",
                "deal_type": props.get("dealtype"),
                "company_id": _first_association_id(data, "companies") or props.get("associatedcompanyid"),
                "owner_id": props.get("hubspot_owner_id"),
            },
            properties=props,
        )

    def _resolve_company(self, company_id: str, fallback_name: str) -> EntityContext:
        data = self._client.get_object("companies", company_id)
        props = data.get("properties") or {}
        address = ", ".join(
            p for p in (props.get("address"), props.get("city"), props.get("state"), props.get("zip")) if p
        )
        return EntityContext(
            entity_type="company",
            entity_id=company_id,
            name=props.get("name") or fallback_name or "Unnamed Company",
            fields={
                "domain": props.get("domain"),
                "website": props.get("website") or props.get("domain"),
                "industry": props.get("industry"),
                "employees": props.get("numberofemployees"),
                "phone": props.get("phone"),
                "address": address or None,
                "owner_id": props.get("hubspot_owner_id"),
            },
            properties=props,
        )

    def _resolve_contact(self, contact_id: str, fallback_name: str) -> EntityContext:
        data = self._client.get_object("contacts", contact_id, associations=["companies"])
        props = data.get("properties") or {}
        full_name = f"{props.get('firstname') or ''} {props.get('lastname') or ''}".strip()
        company_id = _first_association_id(data, "companies")
        company_name = ""
        if company_id:
            try:
                company = self._client.get_object("companies", company_id)
                company_name = (company.get("properties") or {}).get("name") or ""
            except HubSpotAPIError as exc:
                logger.warning("Could not load company %s for contact %s: %s", company_id, contact_id, exc)

        return EntityContext(
            entity_type="contact",
            entity_id=contact_id,
            name=full_name or fallback_name or "Unnamed Contact",
            fields={
                "email": props.get("email"),
                "job_title": props.get("jobtitle"),
                "phone": props.get("phone"),
                "company_id": company_id,
                "company_name": company_name or None,
                "owner_id": props.get("hubspot_owner_id"),
            },
            properties=props,
        )
