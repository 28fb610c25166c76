"""Job Runner: one agent run as a durable unit of work.

The job record is the only output channel.  Every progress event from the
agent becomes one persisted log entry, written as it happens, and every
attempt ends with the job in a terminal status, except for a retryable
model failure, which is handed to the retry wrapper with the job still
``running``.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from sales_intel.agent import AgentResult, IntelligenceAgent
from sales_intel.context import EntityContextResolver
from sales_intel.events import ProgressCallback, ProgressEvent, log_entry, log_entry_from_event
from sales_intel.jobs.changes import detect_changes
from sales_intel.jobs.config_provider import AgentConfigProvider
from sales_intel.jobs.models import IntelligenceJob
from sales_intel.jobs.retry import RetryableAgentError, is_retryable_error
from sales_intel.jobs.store import JobCancelledError, JobStore
from sales_intel.results import build_job_result
from sales_intel.services.metrics import metrics

logger = logging.getLogger(__name__)


def _stats(iterations: int, tool_calls: int, t0: float) -> dict[str, Any]:
    return {
        "iterations": iterations,
        "toolCalls": tool_calls,
        "durationMs": round((time.perf_counter() - t0) * 1000),
    }


class JobRunner:
    def __init__(
        self,
        store: JobStore,
        agent: IntelligenceAgent,
        resolver: EntityContextResolver,
        config_provider: AgentConfigProvider,
    ) -> None:
        self._store = store
        self._agent = agent
        self._resolver = resolver
        self._configs = config_provider

    def progress_callback(self, job_id: str) -> ProgressCallback:
        """Persist each event as one log entry; raises once the job is cancelled."""

        def _on_progress(event: ProgressEvent) -> None:
            self._store.append_log(job_id, log_entry_from_event(event))

        return _on_progress

    def run(self, job_id: str) -> None:
        """Single attempt with no retries; the job always ends terminal."""
        try:
            self.attempt(job_id)
        except RetryableAgentError as exc:
            self._finish_error(job_id, str(exc), exc.stats)

    def attempt(self, job_id: str) -> None:
        """Run the job once.

        Raises :class:`RetryableAgentError` when the model is rate limited or
        overloaded; every other outcome is written to the job record.
        """
        job = self._store.get(job_id)
        if job.status == "cancelled":
            logger.info("Job %s was cancelled before it started", job_id)
            return
        try:
            job = self._store.mark_running(job_id)
        except JobCancelledError:
            return

        t0 = time.perf_counter()
        progress = self.progress_callback(job_id)
        result: AgentResult | None = None
        try:
            progress(ProgressEvent(
                "thinking", f"Starting {job.entity_type} intelligence analysis",
                {"entityType": job.entity_type, "entityId": job.entity_id},
            ))
            context = self._resolver.resolve(job.entity_type, job.entity_id, job.entity_name)
            progress(ProgressEvent(
                "thinking", f"Loaded {job.entity_type} context for {context.name}",
                {"context": {"id": context.entity_id, "name": context.name, **context.fields}},
            ))
            config = self._configs.get(job.entity_type)
            result = self._agent.run(
                context,
                system_prompt=config.effective_prompt,
                max_iterations=config.max_iterations,
                progress=progress,
            )
        except JobCancelledError:
            logger.info("Job %s cancelled mid-run", job_id)
            metrics.record_job_outcome(job.entity_type, "cancelled")
            return
        except Exception as exc:
            stats = _stats(0, 0, t0)
            if is_retryable_error(exc):
                raise RetryableAgentError(str(exc), stats=stats) from exc
            logger.exception("Job %s failed", job_id)
            self._finish_error(job_id, str(exc) or type(exc).__name__, stats)
            return

        stats = _stats(result.iterations, result.tool_calls, t0)
        if result.success:
            self._finish_complete(job, result, stats)
        elif result.retryable:
            raise RetryableAgentError(result.error or "Model rate limited", stats=stats)
        else:
            self._finish_error(job_id, result.error or "Agent failed", stats)

    # ── Finalization ─────────────────────────────────────────────────

    def _finish_complete(self, job: IntelligenceJob, result: AgentResult, stats: dict[str, Any]) -> None:
        job = self._store.complete(
            job.id,
            result=build_job_result(job.entity_type, result.intelligence),
            stats=stats,
            log=log_entry(
                "job-complete", "Intelligence analysis complete", "complete",
                {**stats, "parseTier": result.parse_tier},
            ),
        )
        metrics.record_job_outcome(job.entity_type, job.status)
        if job.status == "complete":
            self._detect_changes(job)

    def _finish_error(self, job_id: str, error: str, stats: dict[str, Any] | None) -> None:
        job = self._store.fail(
            job_id, error, stats=stats,
            log=log_entry("job-error", f"Analysis failed: {error}", "error", {"error": error}),
        )
        metrics.record_job_outcome(job.entity_type, job.status)

    def _detect_changes(self, job: IntelligenceJob) -> None:
        """Attach a delta against the linked previous job; failures are only logged."""
        if not job.previous_job_id:
            return
        try:
            previous = self._store.get(job.previous_job_id)
            if previous.status != "complete":
                return
            changes = detect_changes(job.result, previous.result, previous_job_id=previous.id)
            if changes is not None:
                self._store.attach_change_detection(job.id, changes.to_dict())
                logger.info("Job %s: %s", job.id, changes.summary)
        except Exception:
            logger.exception("Change detection failed for job %s", job.id)
