"""Shared pytest fixtures for the dashboard backend tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.api.deps import get_broadcaster, get_history_store, get_projects, get_run_queue
from app.core.history import RunHistoryStore
from app.core.process import ProcessResult
from app.core.queue import RunAlreadyActiveError
from app.db.session import init_db
from app.main import app
from app.schemas.project import ProjectDescriptor
from app.schemas.test_run import RunRecord, RunStats


# ── Builders ──────────────────────────────────────────────────────────────────

def make_project(
    project_id: str = "kanban",
    *,
    name: str | None = None,
    path: str = "/var/www/kanban/backend",
    port: int = 3010,
    can_run_from_ui: bool = True,
) -> ProjectDescriptor:
    return ProjectDescriptor(
        id=project_id,
        name=name or project_id.title(),
        path=path,
        base_url=f"http://192.168.0.120:{port}",
        port=port,
        can_run_from_ui=can_run_from_ui,
    )


def make_run(
    run_id: str = "1700000000000",
    *,
    passed: int = 3,
    failed: int = 0,
    skipped: int = 0,
    timestamp: str = "2026-02-17T10:00:00.000Z",
) -> RunRecord:
    return RunRecord(
        id=run_id,
        timestamp=timestamp,
        stats=RunStats(
            total=passed + failed + skipped,
            passed=passed,
            failed=failed,
            skipped=skipped,
            duration=1234,
        ),
        exit_code=1 if failed else 0,
        suites=[{"title": "board.spec.js", "specs": [], "suites": []}],
    )


class FakeBroadcaster:
    """Records broadcasts instead of sending them."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def broadcast(self, event: str, data: dict[str, Any]) -> None:
        self.events.append((event, data))

    def named(self, event: str) -> list[dict[str, Any]]:
        return [data for name, data in self.events if name == event]


class ScriptedRunner:
    """Stands in for ``run_process``; replays canned output per command kind.

    ``list_output`` answers ``--list`` invocations, ``chunks`` are streamed
    through ``on_stdout`` for the real run, and ``result`` is returned at the
    end (its output defaults to the joined chunks).
    """

    def __init__(
        self,
        *,
        list_output: str = "",
        chunks: list[str] | None = None,
        result: ProcessResult | None = None,
    ) -> None:
        self.list_output = list_output
        self.chunks = chunks or []
        self.result = result
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, cmd, *, cwd=None, env=None, timeout=300.0, on_stdout=None) -> ProcessResult:
        self.calls.append({"cmd": cmd, "cwd": cwd, "env": env, "timeout": timeout})
        if "--list" in cmd:
            return ProcessResult(output=self.list_output, exit_code=0)
        for chunk in self.chunks:
            if on_stdout is not None:
                await on_stdout(chunk)
        if self.result is not None:
            return self.result
        return ProcessResult(output="".join(self.chunks), exit_code=0)


# ── Database ──────────────────────────────────────────────────────────────────

@pytest.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'history.db'}")
    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> RunHistoryStore:
    return RunHistoryStore(session_factory, limit=20)


@pytest.fixture
def broadcaster() -> FakeBroadcaster:
    return FakeBroadcaster()


# ── HTTP client ───────────────────────────────────────────────────────────────

class RecordingQueue:
    """Run queue double that remembers submissions without running anything."""

    def __init__(self) -> None:
        self.submitted: list[tuple[str, str | None]] = []
        self.batches: list[tuple[list[str], str | None]] = []
        self.active: set[str] = set()

    def submit(self, project_id: str, grep: str | None = None) -> None:
        if project_id in self.active:
            raise RunAlreadyActiveError(f"Tests for {project_id} are already queued or running")
        self.active.add(project_id)
        self.submitted.append((project_id, grep))

    def submit_batch(self, project_ids: list[str], grep: str | None = None) -> None:
        self.batches.append((list(project_ids), grep))


@pytest.fixture
def projects() -> dict[str, ProjectDescriptor]:
    return {
        "kanban": make_project("kanban", name="Kanban Board"),
        "rental": make_project("rental", name="Rental Platform", path="/var/www/rental/backend", port=3002),
        "test-dashboard": make_project(
            "test-dashboard",
            name="Playwright Dashboard",
            path="/var/www/test-dashboard/backend",
            port=3030,
            can_run_from_ui=False,
        ),
    }


@pytest.fixture
def run_queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
async def client(
    store: RunHistoryStore,
    broadcaster: FakeBroadcaster,
    projects: dict[str, ProjectDescriptor],
    run_queue: RecordingQueue,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client wired to a temporary store and fake collaborators."""
    app.dependency_overrides[get_history_store] = lambda: store
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster
    app.dependency_overrides[get_projects] = lambda: projects
    app.dependency_overrides[get_run_queue] = lambda: run_queue

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
