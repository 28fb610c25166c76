"""Tests for the in-process job queue."""

from __future__ import annotations

import threading

from sales_intel.jobs.worker import JobQueue


class TestJobQueue:
    def test_runs_enqueued_jobs(self):
        seen = []
        done = threading.Event()

        def _run(job_id):
            seen.append(job_id)
            if len(seen) == 3:
                done.set()

        jobs = JobQueue(_run, workers=1)
        jobs.start()
        for job_id in ("a", "b", "c"):
            jobs.enqueue(job_id)

        assert done.wait(timeout=5)
        jobs.stop()
        assert seen == ["a", "b", "c"]
        assert jobs.running is False

    def test_worker_survives_job_error(self):
        done = threading.Event()

        def _run(job_id):
            if job_id == "bad":
                raise RuntimeError("boom")
            done.set()

        jobs = JobQueue(_run, workers=1)
        jobs.start()
        jobs.enqueue("bad")
        jobs.enqueue("good")

        assert done.wait(timeout=5)
        jobs.stop()

    def test_backlog_before_start(self):
        jobs = JobQueue(lambda _: None)
        jobs.enqueue("a")
        jobs.enqueue("b")
        assert jobs.backlog == 2
        assert jobs.running is False

    def test_start_is_idempotent(self):
        jobs = JobQueue(lambda _: None, workers=2)
        jobs.start()
        jobs.start()
        assert jobs.running is True
        jobs.stop()
        assert jobs.running is False
