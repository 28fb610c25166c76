"""In-process job queue: request handlers enqueue a job id and return at once;
daemon worker threads dequeue and run each job to completion."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

_STOP = object()


class JobQueue:
    def __init__(self, run_job: Callable[[str], None], *, workers: int = 2) -> None:
        self._run_job = run_job
        self._workers = max(1, workers)
        self._queue: queue.Queue = queue.Queue()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    @property
    def backlog(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self.running:
            return
        self._threads = [
            threading.Thread(target=self._loop, name=f"job-worker-{i}", daemon=True)
            for i in range(self._workers)
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Job queue started with %d workers", self._workers)

    def enqueue(self, job_id: str) -> None:
        self._queue.put(job_id)
        logger.debug("Enqueued job %s (backlog %d)", job_id, self._queue.qsize())

    def stop(self, timeout: float = 5.0) -> None:
        """Let workers finish their current job, then stop them."""
        for _ in self._threads:
            self._queue.put(_STOP)
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Job queue stopped")

    def _loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._run_job(item)
            except Exception:
                # The job record holds the outcome; the worker must survive.
                logger.exception("Unhandled error while running job %s", item)
            finally:
                self._queue.task_done()
