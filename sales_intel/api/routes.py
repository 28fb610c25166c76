"""FastAPI route definitions for the intelligence job API.

Handlers are plain ``def`` functions: FastAPI runs them in its thread pool,
so the short blocking database calls never stall the event loop.  Analysis
itself never runs here; creating a job only enqueues it.
"""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, HTTPException, Query, Request, status

from sales_intel.api.schemas import (
    AgentConfigResponse,
    AgentConfigUpdate,
    BatchCreateRequest,
    CreateJobRequest,
    HealthResponse,
    JobDetail,
    JobList,
    JobSummary,
)
from sales_intel.jobs.config_provider import default_agent_config
from sales_intel.jobs.service import JobService
from sales_intel.jobs.store import JobNotFoundError, JobStateError, JobStore

logger = logging.getLogger(__name__)

router = APIRouter()


EntityType = Literal["deal", "company", "contact"]


def _state(request: Request, name: str):
    """Fetch a resource initialised by the lifespan (see ``server.py``)."""
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=503,
            detail="The service is still starting up. Please try again in a moment.",
        )
    return value


def _store(request: Request) -> JobStore:
    return _state(request, "store")


def _service(request: Request) -> JobService:
    return _state(request, "service")


def _internal_error(request: Request, action: str, exc: Exception) -> HTTPException:
    # Full traceback server-side only; the client gets a generic message.
    request_id = getattr(request.state, "request_id", "?")
    logger.exception("[%s] Error while %s", request_id, action)
    return HTTPException(status_code=500, detail="An internal error occurred. Please try again.")


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
def health_check(request: Request):
    """Health check endpoint."""
    queue = getattr(request.app.state, "queue", None)
    return HealthResponse(
        workers_running=bool(queue and queue.running),
        backlog=queue.backlog if queue else 0,
    )


@router.post("/intelligence", response_model=JobSummary, status_code=status.HTTP_202_ACCEPTED)
def create_job(body: CreateJobRequest, request: Request):
    """Queue an analysis of one entity and return the pending job at once."""
    service = _service(request)
    try:
        job = service.create_job(body.entity_type, body.entity_id, body.entity_name)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except Exception as e:
        raise _internal_error(request, "creating a job", e) from e
    return JobSummary.model_validate(job)


@router.get("/intelligence", response_model=JobList)
def list_jobs(
    request: Request,
    status_filter: str | None = Query(None, alias="status"),
    entity_type: str | None = None,
    entity_id: str | None = None,
    limit: int = Query(50, ge=1, le=200),
):
    """Most recent jobs first, optionally filtered."""
    jobs = _store(request).list_jobs(
        status=status_filter, entity_type=entity_type, entity_id=entity_id, limit=limit,
    )
    return JobList(jobs=[JobSummary.model_validate(j) for j in jobs], count=len(jobs))


@router.post("/intelligence/batch", response_model=JobList, status_code=status.HTTP_202_ACCEPTED)
def create_jobs(body: BatchCreateRequest, request: Request):
    """Queue one analysis per entity; an invalid entry rejects the whole batch."""
    service = _service(request)
    try:
        jobs = service.create_jobs(
            (item.entity_type, item.entity_id, item.entity_name) for item in body.jobs
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except Exception as e:
        raise _internal_error(request, "creating a batch of jobs", e) from e
    return JobList(jobs=[JobSummary.model_validate(j) for j in jobs], count=len(jobs))


@router.get("/intelligence/config/{entity_type}", response_model=AgentConfigResponse)
def get_agent_config(entity_type: EntityType, request: Request):
    """Stored agent configuration for an entity type, or the built-in default."""
    record = _store(request).get_agent_config(entity_type)
    if record is None or not (record.system_prompt or "").strip():
        default = default_agent_config(entity_type)
        return AgentConfigResponse(
            entity_type=entity_type,
            system_prompt=default.system_prompt,
            max_iterations=default.max_iterations,
            is_default=True,
        )
    return _config_response(record)


@router.put("/intelligence/config/{entity_type}", response_model=AgentConfigResponse)
def update_agent_config(entity_type: EntityType, body: AgentConfigUpdate, request: Request):
    """Replace the agent configuration; the next run of this entity type uses it."""
    store = _store(request)
    try:
        record = store.save_agent_config(entity_type, **body.model_dump())
    except Exception as e:
        raise _internal_error(request, "saving an agent config", e) from e
    _state(request, "config_provider").invalidate(entity_type)
    logger.info("Agent config updated for %s", entity_type)
    return _config_response(record)


def _config_response(record) -> AgentConfigResponse:
    return AgentConfigResponse(
        entity_type=record.entity_type,
        system_prompt=record.system_prompt,
        max_iterations=record.max_iterations,
        general_guidelines=record.general_guidelines,
        quality_standards=record.quality_standards,
        updated_at=record.updated_at,
    )


@router.get("/intelligence/{job_id}", response_model=JobDetail)
def get_job(job_id: str, request: Request):
    """Full job record: status, logs so far, result or error, stats."""
    try:
        job = _store(request).get(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return JobDetail.model_validate(job)


@router.post("/intelligence/{job_id}/cancel", response_model=JobDetail)
def cancel_job(job_id: str, request: Request):
    """Cancel a pending or running job; the run stops at its next progress write."""
    try:
        job = _service(request).cancel_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except JobStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return JobDetail.model_validate(job)
