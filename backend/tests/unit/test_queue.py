"""Unit tests for the run queue and its active-project guard.

Total: 6 tests
"""

from __future__ import annotations

import asyncio

import pytest
from conftest import make_project

from app.core.queue import RunAlreadyActiveError, RunQueue


class FakeOrchestrator:
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.runs: list[tuple[str, str | None, bool]] = []
        self.batches: list[list[str]] = []
        self.active_during_batch: list[set[str]] = []
        self.fail_for = fail_for or set()
        self.queue: RunQueue | None = None

    async def start_run(self, project_id, project, grep=None):
        self.runs.append((project_id, grep, project is not None))
        await asyncio.sleep(0)
        if project_id in self.fail_for:
            raise RuntimeError(f"{project_id} exploded")

    async def start_batch_run(self, projects, grep=None):
        ids = []
        for project in projects:
            ids.append(project.id)
            self.active_during_batch.append(self.queue.active_projects)
        self.batches.append(ids)


def _lookup():
    return {
        "kanban": make_project("kanban"),
        "rental": make_project("rental", port=3002),
    }


@pytest.fixture
async def queue_and_orchestrator():
    orch = FakeOrchestrator(fail_for={"rental"})
    queue = RunQueue(orch, workers=1, lookup=_lookup)  # type: ignore[arg-type]
    orch.queue = queue
    queue.start()
    yield queue, orch
    await queue.stop()


class TestRunQueue:
    async def test_duplicate_submit_is_rejected(self):
        queue = RunQueue(FakeOrchestrator(), lookup=_lookup)  # type: ignore[arg-type]
        queue.submit("kanban")

        with pytest.raises(RunAlreadyActiveError):
            queue.submit("kanban")
        assert queue.active_projects == {"kanban"}

    async def test_worker_runs_job_and_releases_project(self, queue_and_orchestrator):
        queue, orch = queue_and_orchestrator

        queue.submit("kanban", "@smoke")
        await queue.join()

        assert orch.runs == [("kanban", "@smoke", True)]
        assert queue.active_projects == set()
        queue.submit("kanban")
        await queue.join()
        assert len(orch.runs) == 2

    async def test_failed_job_does_not_stop_the_worker(self, queue_and_orchestrator):
        queue, orch = queue_and_orchestrator

        queue.submit("rental")
        queue.submit("kanban")
        await queue.join()

        assert [r[0] for r in orch.runs] == ["rental", "kanban"]
        assert queue.active_projects == set()

    async def test_vanished_project_is_passed_as_none(self, queue_and_orchestrator):
        queue, orch = queue_and_orchestrator

        queue.submit("ghost")
        await queue.join()

        assert orch.runs == [("ghost", None, False)]

    async def test_batch_marks_each_project_active_while_it_runs(self, queue_and_orchestrator):
        queue, orch = queue_and_orchestrator

        queue.submit_batch(["kanban", "ghost", "rental"])
        await queue.join()

        assert orch.batches == [["kanban", "rental"]]
        assert orch.active_during_batch == [{"kanban"}, {"rental"}]
        assert queue.active_projects == set()

    async def test_batch_skips_project_that_is_already_active(self):
        queue = RunQueue(FakeOrchestrator(), lookup=_lookup)  # type: ignore[arg-type]
        queue.submit("kanban")

        tracked = [p.id for p in queue._track(list(_lookup().values()))]

        assert tracked == ["rental"]
        assert queue.active_projects == {"kanban"}
