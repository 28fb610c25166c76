"""Retry Wrapper: replays a whole job after rate-limit or overload failures.

Only transient capacity errors from the model API are retried.  Each retry
starts the job from scratch (no conversation is resumed) after an
exponential backoff of ``base_delay * 2 ** (attempt - 1)`` seconds.  While
a retry waits the job is put back to ``pending`` with a log entry, so
pollers see why it stalled.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from sales_intel.config import JOB_MAX_RETRIES, JOB_RETRY_BASE_DELAY_SECONDS
from sales_intel.events import log_entry
from sales_intel.jobs.store import JobCancelledError, JobStore
from sales_intel.services.metrics import metrics

if TYPE_CHECKING:
    from sales_intel.jobs.runner import JobRunner

logger = logging.getLogger(__name__)

RATE_LIMIT_MARKERS = (
    "rate limit",
    "rate_limit",
    "overloaded",
    "too many requests",
    "429",
    "capacity",
)


class RetryableAgentError(Exception):
    """One job attempt failed with a retryable model error.

    The job is left ``running``; the retry wrapper decides whether to wait
    and replay it or to finalize it as ``error``.
    """

    def __init__(self, message: str, *, stats: dict[str, Any] | None = None):
        super().__init__(message)
        self.stats = stats


def is_retryable_error(exc: BaseException) -> bool:
    """True for rate-limit / overload errors (HTTP 429 or a known message)."""
    for attr in ("status_code", "status"):
        if getattr(exc, attr, None) == 429:
            return True
    message = str(exc).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def backoff_delay(retry_number: int, base_delay: float) -> float:
    """Wait before retry *retry_number* (1-based): base, 2×base, 4×base, …"""
    return base_delay * 2 ** (retry_number - 1)


class RetryingJobRunner:
    """Runs a job through :meth:`JobRunner.attempt` with bounded retries."""

    def __init__(
        self,
        runner: JobRunner,
        store: JobStore,
        *,
        max_retries: int = JOB_MAX_RETRIES,
        base_delay: float = JOB_RETRY_BASE_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._runner = runner
        self._store = store
        self._max_retries = max(0, max_retries)
        self._base_delay = base_delay
        self._sleep = sleep

    def run(self, job_id: str) -> None:
        retry = 0
        while True:
            try:
                self._runner.attempt(job_id)
                return
            except RetryableAgentError as exc:
                if retry >= self._max_retries:
                    self._exhausted(job_id, exc, total_attempts=retry + 1)
                    return
                retry += 1
                if not self._wait(job_id, exc, retry):
                    return

    def _wait(self, job_id: str, exc: RetryableAgentError, retry: int) -> bool:
        """Reset the job to pending, sleep, and log the retry.  False if cancelled."""
        delay = backoff_delay(retry, self._base_delay)
        logger.warning(
            "Rate limit on job %s; retry %d/%d in %gs: %s",
            job_id, retry, self._max_retries, delay, exc,
        )
        try:
            self._store.reset_for_retry(job_id, log_entry(
                "rate-limit-wait",
                f"Rate limit encountered. Waiting {delay:g} seconds before retry "
                f"{retry}/{self._max_retries}",
                "warning",
                {"delayMs": round(delay * 1000), "retryAttempt": retry,
                 "maxRetries": self._max_retries, "errorMessage": str(exc)},
            ))
            self._sleep(delay)
            self._store.append_log(job_id, log_entry(
                "retry-attempt",
                f"Retry attempt {retry}/{self._max_retries} after rate limit error",
                "info",
                {"retryAttempt": retry, "maxRetries": self._max_retries,
                 "previousError": str(exc)},
            ))
        except JobCancelledError:
            logger.info("Job %s cancelled while waiting to retry", job_id)
            return False
        return True

    def _exhausted(self, job_id: str, exc: RetryableAgentError, *, total_attempts: int) -> None:
        logger.error("Job %s failed after %d attempts: %s", job_id, total_attempts, exc)
        job = self._store.fail(
            job_id,
            f"Rate limit error after {total_attempts} attempts: {exc}",
            stats=exc.stats,
            log=log_entry(
                "retry-exhausted",
                f"All {self._max_retries} retries exhausted after {total_attempts} attempts. "
                "Job failed due to rate limiting.",
                "error",
                {"totalAttempts": total_attempts, "errorMessage": str(exc)},
            ),
        )
        metrics.record_job_outcome(job.entity_type, job.status)
