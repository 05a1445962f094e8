"""Run queue: HTTP handlers enqueue, worker tasks execute.

Handlers acknowledge immediately; callers learn the outcome from the
broadcast channel or the run history. A project that is already queued or
running cannot be queued a second time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

from app.core.discovery import discover_projects
from app.core.orchestrator import RunOrchestrator
from app.schemas.project import ProjectDescriptor

logger = logging.getLogger(__name__)

ProjectLookup = Callable[[], dict[str, ProjectDescriptor]]


class RunAlreadyActiveError(RuntimeError):
    """The project already has a queued or running test run."""


@dataclass
class RunJob:
    """A single-project run, or a batch when ``project_id`` is None."""

    project_id: str | None
    grep: str | None = None
    batch_ids: list[str] = field(default_factory=list)


class RunQueue:
    """Serialises test runs through a fixed number of asyncio workers."""

    def __init__(
        self,
        orchestrator: RunOrchestrator,
        *,
        workers: int = 1,
        lookup: ProjectLookup = discover_projects,
    ) -> None:
        self.orchestrator = orchestrator
        self.workers = workers
        self._lookup = lookup
        self._queue: asyncio.Queue[RunJob] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._active: set[str] = set()

    @property
    def active_projects(self) -> set[str]:
        return set(self._active)

    def start(self) -> None:
        if self._tasks:
            return
        for n in range(self.workers):
            self._tasks.append(asyncio.create_task(self._worker(n), name=f"run-worker-{n}"))
        logger.info("queue: started %d worker(s)", self.workers)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    def submit(self, project_id: str, grep: str | None = None) -> RunJob:
        if project_id in self._active:
            raise RunAlreadyActiveError(f"Tests for {project_id} are already queued or running")
        self._active.add(project_id)
        job = RunJob(project_id=project_id, grep=grep)
        self._queue.put_nowait(job)
        logger.info("queue: queued run for %s (grep=%r)", project_id, grep)
        return job

    def submit_batch(self, project_ids: list[str], grep: str | None = None) -> RunJob:
        job = RunJob(project_id=None, grep=grep, batch_ids=list(project_ids))
        self._queue.put_nowait(job)
        logger.info("queue: queued batch run for %s", project_ids)
        return job

    async def _worker(self, n: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run_job(job)
            except Exception as exc:
                # Already broadcast as tests:error by the orchestrator
                logger.error("queue: worker %d job failed: %s", n, exc)
            finally:
                if job.project_id is not None:
                    self._active.discard(job.project_id)
                self._queue.task_done()

    async def _run_job(self, job: RunJob) -> None:
        # Fresh lookup: projects may change on the host between trigger and run
        projects = self._lookup()
        if job.project_id is not None:
            await self.orchestrator.start_run(job.project_id, projects.get(job.project_id), job.grep)
            return

        batch = [projects[pid] for pid in job.batch_ids if pid in projects]
        await self.orchestrator.start_batch_run(self._track(batch), job.grep)

    def _track(self, projects: list[ProjectDescriptor]):
        """Mark each batch project active only while its own run is in flight."""
        for project in projects:
            if project.id in self._active:
                logger.info("queue: batch skipping %s, already queued or running", project.id)
                continue
            self._active.add(project.id)
            try:
                yield project
            finally:
                self._active.discard(project.id)
