"""Test-run orchestration.

Sequences one project run through its states::

    idle -> started -> running (progress*) -> completed | errored

and broadcasts each transition. Every run ends with exactly one of
``tests:completed`` or ``tests:error``. Progress counters live in a
:class:`ProgressParser` created for the run, so runs of different projects
never share state.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Iterable, Protocol

from app.config import Settings, settings as default_settings
from app.core.history import RunHistoryStore
from app.core.process import ProcessResult, run_process
from app.core.progress import ProgressParser, ProgressSnapshot
from app.core.summarizer import count_listed_tests, extract_report, summarize
from app.core.validation import sanitize_grep
from app.schemas.project import ProjectDescriptor
from app.schemas.test_run import RunRecord
from app.ws import utc_now_iso

logger = logging.getLogger(__name__)

EVENT_STARTED = "tests:started"
EVENT_PROGRESS = "tests:progress"
EVENT_COMPLETED = "tests:completed"
EVENT_ERROR = "tests:error"

Runner = Callable[..., Awaitable[ProcessResult]]


class Broadcaster(Protocol):
    async def broadcast(self, event: str, data: dict[str, Any]) -> None: ...


class ProjectNotRunnableError(RuntimeError):
    """The project is unknown or may not be triggered from the dashboard."""


class RunnerLaunchError(RuntimeError):
    """The test runner process could not be started."""


def new_run_id() -> str:
    """Millisecond timestamp; unique enough for one project's sequential runs."""
    return str(int(time.time() * 1000))


class RunOrchestrator:
    """Drives test runs from launch to persisted history."""

    def __init__(
        self,
        store: RunHistoryStore,
        broadcaster: Broadcaster,
        *,
        runner: Runner = run_process,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.broadcaster = broadcaster
        self.runner = runner
        self.settings = settings or default_settings

    def build_command(self, grep: str | None = None, *, list_only: bool = False) -> list[str]:
        cmd = list(self.settings.runner_command)
        if list_only:
            cmd += ["--list", "--reporter=json"]
        else:
            # line for live progress, json for the final summary
            cmd += ["--reporter=line,json"]
        if grep:
            cmd += ["--grep", grep]
        return cmd

    @staticmethod
    def _run_env(project: ProjectDescriptor) -> dict[str, str]:
        return {"E2E_BASE_URL": project.base_url}

    async def count_expected(self, project: ProjectDescriptor, grep: str | None = None) -> int:
        """Dry-list the suite to get the progress denominator; 0 when that fails."""
        try:
            result = await self.runner(
                self.build_command(grep, list_only=True),
                cwd=project.path,
                env=self._run_env(project),
                timeout=self.settings.list_timeout_seconds,
            )
        except Exception as exc:
            logger.warning("orchestrator: test listing failed for %s: %s", project.id, exc)
            return 0
        if result.launch_error or result.timed_out:
            logger.warning(
                "orchestrator: test listing failed for %s: %s",
                project.id,
                result.launch_error or "timed out",
            )
            return 0
        return count_listed_tests(extract_report(result.output))

    async def _emit_progress(self, project_id: str, snap: ProgressSnapshot) -> None:
        logger.debug(
            "orchestrator: [%s] progress %d/%d (%d passed, %d failed, %d skipped)",
            project_id,
            snap.completed,
            snap.expected_total,
            snap.passed,
            snap.failed,
            snap.skipped,
        )
        await self.broadcaster.broadcast(EVENT_PROGRESS, {"projectId": project_id, **snap.to_payload()})

    async def start_run(
        self,
        project_id: str,
        project: ProjectDescriptor | None,
        grep: str | None = None,
    ) -> None:
        """Run one project's suite; outcome is reported via broadcasts and history.

        Failures are broadcast as ``tests:error`` and then re-raised.
        """
        try:
            await self._execute(project_id, project, grep)
        except Exception as exc:
            logger.exception("orchestrator: run for %s failed", project_id)
            await self.broadcaster.broadcast(EVENT_ERROR, {"projectId": project_id, "error": str(exc)})
            raise

    async def _execute(
        self,
        project_id: str,
        project: ProjectDescriptor | None,
        grep: str | None,
    ) -> RunRecord:
        if project is None:
            raise ProjectNotRunnableError(f"Project {project_id} not found")
        if not project.can_run_from_ui:
            raise ProjectNotRunnableError(f"Tests for {project_id} run via CI/CD pipeline, not from UI")
        if grep is not None and sanitize_grep(grep) != grep:
            raise ValueError(f"Unsafe grep filter for {project_id}")

        started = time.monotonic()
        start_time = utc_now_iso()

        # ── started ──────────────────────────────────────────────────────────
        expected_total = await self.count_expected(project, grep)
        logger.info("orchestrator: expecting %d tests for %s", expected_total, project_id)
        await self.broadcaster.broadcast(
            EVENT_STARTED,
            {
                "projectId": project_id,
                "grep": grep,
                "expectedTotal": expected_total,
                "startTime": start_time,
            },
        )

        # ── running ──────────────────────────────────────────────────────────
        parser = ProgressParser(expected_total)

        async def _on_stdout(chunk: str) -> None:
            for snap in parser.feed(chunk):
                await self._emit_progress(project_id, snap)

        cmd = self.build_command(grep)
        logger.info("orchestrator: running %s in %s", " ".join(cmd), project.path)
        result = await self.runner(
            cmd,
            cwd=project.path,
            env=self._run_env(project),
            timeout=self.settings.run_timeout_seconds,
            on_stdout=_on_stdout,
        )
        for snap in parser.flush():
            await self._emit_progress(project_id, snap)

        if result.launch_error:
            raise RunnerLaunchError(f"Failed to start test process: {result.launch_error}")

        # ── completed ────────────────────────────────────────────────────────
        duration = int((time.monotonic() - started) * 1000)
        report = extract_report(result.output)
        stats = summarize(report, duration)
        errors = list(report.get("errors") or [])
        if result.timed_out:
            notice = f"Test run timed out after {self.settings.run_timeout_seconds:g} seconds"
            # An unparsed report already carries the notice in its output head
            if not any(notice in str(e) for e in errors):
                errors.append(notice)

        run = RunRecord(
            id=new_run_id(),
            timestamp=utc_now_iso(),
            stats=stats,
            grep=grep,
            exit_code=result.exit_code,
            source="dashboard",
            suites=list(report.get("suites") or []),
            errors=errors,
        )
        await self.store.append(project_id, run)

        logger.info(
            "orchestrator: tests completed for %s: %d/%d passed (exit %d)",
            project_id,
            stats.passed,
            stats.total,
            result.exit_code,
        )
        await self.broadcaster.broadcast(
            EVENT_COMPLETED,
            {"projectId": project_id, "run": run.model_dump(by_alias=True)},
        )
        return run

    async def start_batch_run(
        self,
        projects: Iterable[ProjectDescriptor],
        grep: str | None = None,
    ) -> None:
        """Run every runnable project one after another.

        Sequential on purpose: the suites share target environments and
        ports. A failing project is logged and the batch moves on.
        """
        for project in projects:
            if not project.can_run_from_ui:
                logger.info("orchestrator: batch skipping %s (not runnable from UI)", project.id)
                continue
            try:
                await self.start_run(project.id, project, grep)
            except Exception as exc:
                logger.error("orchestrator: batch run for %s failed: %s", project.id, exc)
