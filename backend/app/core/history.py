"""Per-project bounded run history backed by SQLAlchemy."""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.test_run import TestRun
from app.schemas.test_run import ProjectResultSummary, RunHistory, RunRecord, RunStats

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20


def _to_row(project_id: str, run: RunRecord) -> TestRun:
    return TestRun(
        project_id=project_id,
        run_id=run.id,
        timestamp=run.timestamp,
        stats_total=run.stats.total,
        stats_passed=run.stats.passed,
        stats_failed=run.stats.failed,
        stats_skipped=run.stats.skipped,
        stats_duration=run.stats.duration,
        grep=run.grep,
        source=run.source,
        exit_code=run.exit_code,
        suites=run.suites,
        errors=run.errors,
    )


def _to_record(row: TestRun) -> RunRecord:
    return RunRecord(
        id=row.run_id,
        timestamp=row.timestamp,
        stats=RunStats(
            total=row.stats_total,
            passed=row.stats_passed,
            failed=row.stats_failed,
            skipped=row.stats_skipped,
            duration=row.stats_duration,
        ),
        grep=row.grep,
        exit_code=row.exit_code,
        source=row.source,
        suites=row.suites or [],
        errors=row.errors or [],
    )


class RunHistoryStore:
    """Sole writer of the run history.

    Each append inserts the run and evicts everything past the newest
    ``limit`` rows of that project in a single transaction, so an
    interrupted write leaves the previous history intact. Two appends racing
    for the same project both land and the newest ``limit`` survive.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._session_factory = session_factory
        self.limit = limit

    async def append(self, project_id: str, run: RunRecord) -> RunHistory:
        async with self._session_factory() as db:
            async with db.begin():
                db.add(_to_row(project_id, run))
                await db.flush()

                keep = (
                    select(TestRun.seq)
                    .where(TestRun.project_id == project_id)
                    .order_by(TestRun.seq.desc())
                    .limit(self.limit)
                )
                evicted = await db.execute(
                    delete(TestRun)
                    .where(TestRun.project_id == project_id, TestRun.seq.not_in(keep))
                    .execution_options(synchronize_session=False)
                )
                if evicted.rowcount:
                    logger.debug("history: evicted %d old run(s) for %s", evicted.rowcount, project_id)

        logger.info(
            "history: stored run %s for %s (%d/%d passed)",
            run.id,
            project_id,
            run.stats.passed,
            run.stats.total,
        )
        return await self.read_last(project_id)

    async def read_all(self, project_id: str) -> list[RunRecord]:
        """All stored runs of *project_id*, newest first; empty when none exist."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(TestRun)
                .where(TestRun.project_id == project_id)
                .order_by(TestRun.seq.desc())
                .limit(self.limit)
            )
            return [_to_record(row) for row in result.scalars().all()]

    async def read_last(self, project_id: str) -> RunHistory:
        """The project's log with ``lastRun``; ``{runs: [], lastRun: None}`` when absent."""
        runs = await self.read_all(project_id)
        return RunHistory(runs=runs, last_run=runs[0] if runs else None)

    async def summary(self, projects: Iterable[tuple[str, str]]) -> dict[str, ProjectResultSummary]:
        """Overview of the last run for each ``(project_id, name)`` pair."""
        out: dict[str, ProjectResultSummary] = {}
        for project_id, name in projects:
            history = await self.read_last(project_id)
            last = history.last_run
            if last is None:
                out[project_id] = ProjectResultSummary(name=name)
                continue
            if last.stats.failed > 0:
                status = "failed"
            elif last.stats.passed > 0:
                status = "passed"
            else:
                status = "unknown"
            out[project_id] = ProjectResultSummary(
                name=name,
                last_run=last,
                passed=last.stats.passed,
                failed=last.stats.failed,
                skipped=last.stats.skipped,
                total=last.stats.total,
                status=status,
            )
        return out
