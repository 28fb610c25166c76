"""Job persistence with enforced status transitions.

Lifecycle::

    pending → running → complete | error | cancelled
       ↑         │
       └─────────┘  (scheduled retry)

``pending`` may also go straight to ``cancelled`` or ``error``.  Terminal jobs
are immutable except for :meth:`JobStore.attach_change_detection`.  Every
method is one short transaction, so pollers see each log entry as soon as it
is written.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from sales_intel.jobs.models import AgentConfigRecord, IntelligenceJob

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"running", "cancelled", "error"}),
    "running": frozenset({"pending", "complete", "error", "cancelled"}),
}


class JobNotFoundError(LookupError):
    """No job with the requested id exists."""


class JobStateError(RuntimeError):
    """The requested change is not allowed in the job's current status."""


class JobCancelledError(JobStateError):
    """The job was cancelled; raised to unwind a run that is still writing to it."""


def _now() -> datetime:
    return datetime.now(UTC)


class JobStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory
        # Serializes read-modify-write cycles within this process.
        self._lock = threading.RLock()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _load(session: Session, job_id: str) -> IntelligenceJob:
        job = session.get(IntelligenceJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    @staticmethod
    def _transition(job: IntelligenceJob, status: str) -> None:
        if status not in _TRANSITIONS.get(job.status, frozenset()):
            raise JobStateError(f"Job {job.id} cannot move from {job.status} to {status}")
        logger.info("Job %s: %s → %s", job.id, job.status, status)
        job.status = status

    @staticmethod
    def _append(job: IntelligenceJob, entry: dict[str, Any]) -> None:
        # Reassign so the JSON column registers the change.
        job.logs = [*(job.logs or []), entry]

    # ── Queries ──────────────────────────────────────────────────────

    def get(self, job_id: str) -> IntelligenceJob:
        with self._session() as session:
            return self._load(session, job_id)

    def list_jobs(
        self,
        *,
        status: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        limit: int = 50,
    ) -> list[IntelligenceJob]:
        """Most recent jobs first, optionally filtered."""
        stmt = select(IntelligenceJob)
        if status:
            stmt = stmt.where(IntelligenceJob.status == status)
        if entity_type:
            stmt = stmt.where(IntelligenceJob.entity_type == entity_type)
        if entity_id:
            stmt = stmt.where(IntelligenceJob.entity_id == entity_id)
        stmt = stmt.order_by(IntelligenceJob.created_at.desc()).limit(max(1, min(limit, 200)))
        with self._session() as session:
            return list(session.scalars(stmt))

    def latest_completed(
        self,
        entity_type: str,
        entity_id: str,
        *,
        exclude_id: str | None = None,
    ) -> IntelligenceJob | None:
        stmt = select(IntelligenceJob).where(
            IntelligenceJob.entity_type == entity_type,
            IntelligenceJob.entity_id == entity_id,
            IntelligenceJob.status == "complete",
        )
        if exclude_id:
            stmt = stmt.where(IntelligenceJob.id != exclude_id)
        stmt = stmt.order_by(
            IntelligenceJob.completed_at.desc(), IntelligenceJob.created_at.desc(),
        ).limit(1)
        with self._session() as session:
            return session.scalars(stmt).first()

    # ── Lifecycle ────────────────────────────────────────────────────

    def create(
        self,
        entity_type: str,
        entity_id: str,
        entity_name: str = "",
        *,
        previous_job_id: str | None = None,
        version: int = 1,
    ) -> IntelligenceJob:
        job = IntelligenceJob(
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            status="pending",
            version=version,
            previous_job_id=previous_job_id,
            logs=[],
            created_at=_now(),
        )
        with self._session() as session:
            session.add(job)
        logger.info("Created job %s for %s %s (v%d)", job.id, entity_type, entity_id, version)
        return job

    def mark_running(self, job_id: str) -> IntelligenceJob:
        with self._lock, self._session() as session:
            job = self._load(session, job_id)
            if job.status == "cancelled":
                raise JobCancelledError(f"Job {job_id} was cancelled")
            self._transition(job, "running")
            if job.started_at is None:
                job.started_at = _now()
            return job

    def append_log(self, job_id: str, entry: dict[str, Any]) -> None:
        """Reload the job, refuse if cancelled, append one entry, save."""
        with self._lock, self._session() as session:
            job = self._load(session, job_id)
            if job.status == "cancelled":
                raise JobCancelledError(f"Job {job_id} was cancelled")
            if job.is_terminal:
                raise JobStateError(f"Job {job_id} is {job.status}; its log is closed")
            self._append(job, entry)

    def reset_for_retry(self, job_id: str, entry: dict[str, Any]) -> IntelligenceJob:
        """``running → pending`` while a retry waits, with the reason logged."""
        with self._lock, self._session() as session:
            job = self._load(session, job_id)
            if job.status == "cancelled":
                raise JobCancelledError(f"Job {job_id} was cancelled")
            self._transition(job, "pending")
            self._append(job, entry)
            return job

    def complete(
        self,
        job_id: str,
        *,
        result: dict[str, Any],
        stats: dict[str, Any],
        log: dict[str, Any] | None = None,
    ) -> IntelligenceJob:
        """Finalize as ``complete``; a job cancelled meanwhile stays cancelled."""
        with self._lock, self._session() as session:
            job = self._load(session, job_id)
            if job.status == "cancelled":
                logger.info("Job %s was cancelled before completion; result dropped", job_id)
                return job
            self._transition(job, "complete")
            job.result = result
            job.stats = stats
            job.error = None
            job.completed_at = _now()
            if log is not None:
                self._append(job, log)
            return job

    def fail(
        self,
        job_id: str,
        error: str,
        *,
        stats: dict[str, Any] | None = None,
        log: dict[str, Any] | None = None,
    ) -> IntelligenceJob:
        """Finalize as ``error``; a job cancelled meanwhile stays cancelled."""
        with self._lock, self._session() as session:
            job = self._load(session, job_id)
            if job.status == "cancelled":
                return job
            self._transition(job, "error")
            job.error = error
            if stats is not None:
                job.stats = stats
            job.completed_at = _now()
            if log is not None:
                self._append(job, log)
            return job

    def cancel(self, job_id: str) -> IntelligenceJob:
        """Cancel a pending or running job; terminal jobs are returned unchanged."""
        with self._lock, self._session() as session:
            job = self._load(session, job_id)
            if job.is_terminal:
                return job
            self._transition(job, "cancelled")
            job.completed_at = _now()
            return job

    def attach_change_detection(self, job_id: str, record: dict[str, Any]) -> IntelligenceJob:
        with self._lock, self._session() as session:
            job = self._load(session, job_id)
            if job.status != "complete":
                raise JobStateError(f"Job {job_id} is {job.status}; only complete jobs carry changes")
            job.change_detection = record
            return job

    # ── Agent configuration ──────────────────────────────────────────

    def get_agent_config(self, entity_type: str) -> AgentConfigRecord | None:
        with self._session() as session:
            return session.get(AgentConfigRecord, entity_type)

    def save_agent_config(
        self,
        entity_type: str,
        *,
        system_prompt: str,
        max_iterations: int,
        general_guidelines: str | None = None,
        quality_standards: str | None = None,
    ) -> AgentConfigRecord:
        with self._session() as session:
            record = session.get(AgentConfigRecord, entity_type)
            if record is None:
                record = AgentConfigRecord(entity_type=entity_type)
                session.add(record)
            record.system_prompt = system_prompt
            record.max_iterations = max_iterations
            record.general_guidelines = general_guidelines
            record.quality_standards = quality_standards
            record.updated_at = _now()
            return record
