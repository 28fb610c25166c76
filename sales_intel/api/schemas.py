"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class CreateJobRequest(BaseModel):
    """Request to analyze one CRM entity."""

    entity_type: Literal["deal", "company", "contact"]
    entity_id: str = Field(..., min_length=1, max_length=64, description="CRM object id")
    entity_name: str = Field("", max_length=255, description="Display name, used if the CRM has none")


class BatchCreateRequest(BaseModel):
    """Request to analyze several entities; each one becomes its own job."""

    jobs: list[CreateJobRequest] = Field(..., min_length=1, max_length=100)


class JobSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    entity_type: str
    entity_id: str
    entity_name: str
    status: str
    version: int
    previous_job_id: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class JobDetail(JobSummary):
    """Full job record as polled by the UI."""

    started_at: datetime | None = None
    logs: list[dict[str, Any]] = Field(default_factory=list)
    result: dict[str, Any] | None = None
    error: str | None = None
    stats: dict[str, Any] | None = None
    change_detection: dict[str, Any] | None = None


class JobList(BaseModel):
    jobs: list[JobSummary]
    count: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "sales-intelligence-agent"
    workers_running: bool = False
    backlog: int = 0


class AgentConfigUpdate(BaseModel):
    """Replacement agent configuration for one entity type."""

    system_prompt: str = Field(..., min_length=1)
    max_iterations: int = Field(..., ge=1, le=50)
    general_guidelines: str | None = None
    quality_standards: str | None = None


class AgentConfigResponse(AgentConfigUpdate):
    entity_type: str
    is_default: bool = False
    updated_at: datetime | None = None
