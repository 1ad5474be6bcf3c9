"""
Unit tests for chat_memory/ops/jobs.py

Tests the thread-pool BackgroundRunner and its job status records.
"""
import threading

import pytest
from structlog.testing import capture_logs

from chat_memory.ops.jobs import BackgroundRunner


@pytest.fixture
def runner():
    r = BackgroundRunner(max_workers=2)
    yield r
    r.shutdown(wait=True)


def test_job_runs_with_arguments(runner):
    seen = []

    job_id = runner.submit("collect", lambda a, b=0: seen.append(a + b), 2, b=3)

    assert runner.wait_idle(timeout=5)
    assert seen == [5]
    job = runner.get(job_id)
    assert job.state == "succeeded"
    assert job.started_at is not None and job.finished_at >= job.started_at


def test_submit_does_not_block(runner):
    release = threading.Event()

    job_id = runner.submit("slow", release.wait, 5)

    assert runner.get(job_id).state in ("queued", "running")
    release.set()
    assert runner.wait_idle(timeout=5)
    assert runner.get(job_id).state == "succeeded"


def test_failed_job_recorded_and_logged(runner):
    def boom():
        raise ValueError("Test error")

    with capture_logs() as logs:
        job_id = runner.submit("boom", boom)
        assert runner.wait_idle(timeout=5)

    job = runner.get(job_id)
    assert job.state == "failed"
    assert job.error == "Test error"
    assert any(e["event"] == "job_failed" and e["job_name"] == "boom" for e in logs)


def test_list_filters_by_state(runner):
    runner.submit("ok", lambda: None)
    runner.submit("bad", lambda: 1 / 0)
    runner.wait_idle(timeout=5)

    assert [j.name for j in runner.list("failed")] == ["bad"]
    assert [j.name for j in runner.list("succeeded")] == ["ok"]
    assert len(runner.list()) == 2


def test_to_dict(runner):
    job_id = runner.submit("noop", lambda: None)
    runner.wait_idle(timeout=5)

    data = runner.get(job_id).to_dict()
    assert data["id"] == job_id
    assert data["name"] == "noop"
    assert data["state"] == "succeeded"


def test_unknown_job_is_none(runner):
    assert runner.get("nope") is None


def test_wait_idle_timeout():
    runner = BackgroundRunner(max_workers=1)
    release = threading.Event()
    runner.submit("blocked", release.wait, 5)

    assert runner.wait_idle(timeout=0.05) is False

    release.set()
    runner.shutdown(wait=True)


def test_finished_jobs_are_pruned():
    runner = BackgroundRunner(max_workers=1, max_history=2)
    ids = [runner.submit("noop", lambda: None) for _ in range(5)]

    assert runner.wait_idle(timeout=5)

    assert {j.id for j in runner.list()} == set(ids[-2:])
    assert runner.get(ids[0]) is None
    assert runner._futures == {}
    runner.shutdown(wait=True)


def test_running_jobs_survive_pruning():
    runner = BackgroundRunner(max_workers=2, max_history=0)
    release = threading.Event()
    blocked = runner.submit("blocked", release.wait, 5)
    runner.submit("quick", lambda: None)

    assert runner.get(blocked).state in ("queued", "running")

    release.set()
    assert runner.wait_idle(timeout=5)
    assert runner.list() == []
    runner.shutdown(wait=True)


def test_submit_after_shutdown_raises():
    runner = BackgroundRunner(max_workers=1)
    runner.shutdown()
    with pytest.raises(RuntimeError):
        runner.submit("late", lambda: None)


def test_context_manager_waits():
    done = []
    with BackgroundRunner(max_workers=1) as runner:
        runner.submit("work", lambda: done.append(True))
    assert done == [True]
