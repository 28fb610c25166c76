"""Tests for the SQLAlchemy-backed job store."""

from __future__ import annotations

import pytest

from sales_intel.events import log_entry
from sales_intel.jobs.store import JobCancelledError, JobNotFoundError, JobStateError


def _entry(step: str = "step") -> dict:
    return log_entry(step, "message", "info")


class TestCreateAndQuery:
    def test_create_pending(self, store):
        job = store.create("deal", "D-1", "Acme Renewal")

        loaded = store.get(job.id)
        assert loaded.status == "pending"
        assert loaded.version == 1
        assert loaded.previous_job_id is None
        assert loaded.logs == []
        assert loaded.entity_name == "Acme Renewal"

    def test_get_unknown(self, store):
        with pytest.raises(JobNotFoundError):
            store.get("nope")

    def test_list_filters(self, store):
        store.create("deal", "D-1")
        store.create("deal", "D-2")
        store.create("company", "C-1")

        assert len(store.list_jobs()) == 3
        assert {j.entity_id for j in store.list_jobs(entity_type="deal")} == {"D-1", "D-2"}
        assert [j.entity_id for j in store.list_jobs(entity_id="C-1")] == ["C-1"]
        assert store.list_jobs(status="complete") == []
        assert len(store.list_jobs(limit=1)) == 1

    def test_latest_completed(self, store):
        first = store.create("deal", "D-1")
        store.mark_running(first.id)
        store.complete(first.id, result={"healthScore": 4}, stats={})
        pending = store.create("deal", "D-1")

        latest = store.latest_completed("deal", "D-1")
        assert latest.id == first.id
        assert store.latest_completed("deal", "D-1", exclude_id=first.id) is None
        assert store.latest_completed("deal", "D-9") is None
        assert pending.status == "pending"


class TestTransitions:
    def test_running_then_complete(self, store):
        job = store.create("deal", "D-1")
        running = store.mark_running(job.id)
        assert running.status == "running"
        assert running.started_at is not None

        done = store.complete(
            job.id, result={"healthScore": 7}, stats={"iterations": 2},
            log=_entry("job-complete"),
        )
        assert done.status == "complete"
        assert done.completed_at is not None

        loaded = store.get(job.id)
        assert loaded.result == {"healthScore": 7}
        assert loaded.stats == {"iterations": 2}
        assert loaded.logs[-1]["step"] == "job-complete"

    def test_fail_sets_error(self, store):
        job = store.create("deal", "D-1")
        store.mark_running(job.id)
        failed = store.fail(job.id, "boom", stats={"iterations": 1})
        assert failed.status == "error"
        assert store.get(job.id).error == "boom"

    def test_pending_can_fail_directly(self, store):
        job = store.create("deal", "D-1")
        assert store.fail(job.id, "context unavailable").status == "error"

    def test_cannot_complete_pending(self, store):
        job = store.create("deal", "D-1")
        with pytest.raises(JobStateError):
            store.complete(job.id, result={}, stats={})

    def test_terminal_is_final(self, store):
        job = store.create("deal", "D-1")
        store.mark_running(job.id)
        store.complete(job.id, result={}, stats={})
        with pytest.raises(JobStateError):
            store.mark_running(job.id)
        with pytest.raises(JobStateError):
            store.fail(job.id, "late")

    def test_reset_for_retry(self, store):
        job = store.create("deal", "D-1")
        store.mark_running(job.id)
        first_start = store.get(job.id).started_at
        reset = store.reset_for_retry(job.id, _entry("rate-limit-wait"))

        assert reset.status == "pending"
        assert reset.logs[-1]["step"] == "rate-limit-wait"
        store.mark_running(job.id)
        assert store.get(job.id).started_at == first_start


class TestLogs:
    def test_append_in_order(self, store):
        job = store.create("deal", "D-1")
        store.mark_running(job.id)
        for step in ("a", "b", "c"):
            store.append_log(job.id, _entry(step))
        assert [e["step"] for e in store.get(job.id).logs] == ["a", "b", "c"]

    def test_append_after_complete_rejected(self, store):
        job = store.create("deal", "D-1")
        store.mark_running(job.id)
        store.complete(job.id, result={}, stats={})
        with pytest.raises(JobStateError):
            store.append_log(job.id, _entry())


class TestCancel:
    def test_cancel_running(self, store):
        job = store.create("deal", "D-1")
        store.mark_running(job.id)
        assert store.cancel(job.id).status == "cancelled"

    def test_cancel_terminal_unchanged(self, store):
        job = store.create("deal", "D-1")
        store.mark_running(job.id)
        store.fail(job.id, "boom")
        assert store.cancel(job.id).status == "error"

    def test_append_log_after_cancel_raises(self, store):
        job = store.create("deal", "D-1")
        store.mark_running(job.id)
        store.cancel(job.id)
        with pytest.raises(JobCancelledError):
            store.append_log(job.id, _entry())

    def test_finalize_after_cancel_is_noop(self, store):
        job = store.create("deal", "D-1")
        store.mark_running(job.id)
        store.cancel(job.id)

        assert store.complete(job.id, result={"healthScore": 1}, stats={}).status == "cancelled"
        assert store.fail(job.id, "late").status == "cancelled"
        loaded = store.get(job.id)
        assert loaded.result is None
        assert loaded.error is None

    def test_mark_running_after_cancel(self, store):
        job = store.create("deal", "D-1")
        store.cancel(job.id)
        with pytest.raises(JobCancelledError):
            store.mark_running(job.id)


class TestChangeDetectionAndConfig:
    def test_attach_requires_complete(self, store):
        job = store.create("deal", "D-1")
        with pytest.raises(JobStateError):
            store.attach_change_detection(job.id, {"hasChanges": False})

        store.mark_running(job.id)
        store.complete(job.id, result={}, stats={})
        store.attach_change_detection(job.id, {"hasChanges": True})
        assert store.get(job.id).change_detection == {"hasChanges": True}

    def test_agent_config_roundtrip(self, store):
        assert store.get_agent_config("deal") is None
        store.save_agent_config("deal", system_prompt="Be brief.", max_iterations=4)
        store.save_agent_config(
            "deal", system_prompt="Be thorough.", max_iterations=6,
            quality_standards="Cite sources.",
        )
        record = store.get_agent_config("deal")
        assert record.system_prompt == "Be thorough."
        assert record.max_iterations == 6
        assert record.quality_standards == "Cite sources."
