"""Job creation and cancellation, the entry points callers use."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from sales_intel.context import ENTITY_TYPES
from sales_intel.jobs.models import IntelligenceJob
from sales_intel.jobs.store import JobStore

logger = logging.getLogger(__name__)


class JobService:
    """Creates jobs linked to the entity's previous analysis and hands them off.

    *enqueue* receives the id of every new job; it is the background
    worker's intake and never runs the job on the caller's thread.
    """

    def __init__(self, store: JobStore, enqueue: Callable[[str], None]) -> None:
        self._store = store
        self._enqueue = enqueue

    def create_job(self, entity_type: str, entity_id: str, entity_name: str = "") -> IntelligenceJob:
        entity_id = self._validate(entity_type, entity_id)
        previous = self._store.latest_completed(entity_type, entity_id)
        job = self._store.create(
            entity_type,
            entity_id,
            entity_name,
            previous_job_id=previous.id if previous else None,
            version=previous.version + 1 if previous else 1,
        )
        self._enqueue(job.id)
        return job

    def create_jobs(self, entities: Iterable[tuple[str, str, str]]) -> list[IntelligenceJob]:
        """One job per ``(entity_type, entity_id, entity_name)``, in order.

        Every entry is validated before any job is created, so a bad entry
        rejects the whole batch.
        """
        entities = list(entities)
        if not entities:
            raise ValueError("At least one entity is required")
        for entity_type, entity_id, _ in entities:
            self._validate(entity_type, entity_id)
        jobs = [self.create_job(*entity) for entity in entities]
        logger.info("Queued a batch of %d jobs", len(jobs))
        return jobs

    @staticmethod
    def _validate(entity_type: str, entity_id: str) -> str:
        if entity_type not in ENTITY_TYPES:
            raise ValueError(
                f"Unsupported entity type {entity_type!r}; expected one of {', '.join(ENTITY_TYPES)}"
            )
        entity_id = str(entity_id).strip()
        if not entity_id:
            raise ValueError("entity_id must not be empty")
        return entity_id

    def cancel_job(self, job_id: str) -> IntelligenceJob:
        """Cancel a pending or running job; terminal jobs come back unchanged."""
        job = self._store.cancel(job_id)
        logger.info("Cancel requested for job %s (now %s)", job_id, job.status)
        return job
