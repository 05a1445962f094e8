"""Unit tests for the bounded run history store.

Total: 9 tests
"""

from __future__ import annotations

from conftest import make_run

from app.core.history import RunHistoryStore


class TestAppendAndRead:
    async def test_unknown_project_has_empty_history(self, store: RunHistoryStore):
        history = await store.read_last("nobody")

        assert history.runs == []
        assert history.last_run is None
        assert history.model_dump(by_alias=True) == {"runs": [], "lastRun": None}

    async def test_round_trip_preserves_every_field(self, store: RunHistoryStore):
        run = make_run("1700000000001", passed=4, failed=1, skipped=2).model_copy(
            update={
                "grep": "@smoke",
                "errors": ["boom"],
                "timestamp": "2026-02-17T10:00:00.123Z",
            }
        )
        await store.append("kanban", run)

        stored = (await store.read_all("kanban"))[0]
        assert stored == run
        assert stored.timestamp == "2026-02-17T10:00:00.123Z"

    async def test_newest_first_and_last_run(self, store: RunHistoryStore):
        for n in range(3):
            await store.append("kanban", make_run(f"run-{n}"))

        history = await store.read_last("kanban")
        assert [r.id for r in history.runs] == ["run-2", "run-1", "run-0"]
        assert history.last_run is not None
        assert history.last_run.id == "run-2"

    async def test_append_returns_updated_history(self, store: RunHistoryStore):
        history = await store.append("kanban", make_run("only"))
        assert [r.id for r in history.runs] == ["only"]

    async def test_projects_are_isolated(self, store: RunHistoryStore):
        await store.append("kanban", make_run("k1"))
        await store.append("rental", make_run("r1"))

        assert [r.id for r in await store.read_all("kanban")] == ["k1"]
        assert [r.id for r in await store.read_all("rental")] == ["r1"]


class TestRetention:
    async def test_keeps_only_newest_twenty(self, store: RunHistoryStore):
        for n in range(21):
            await store.append("kanban", make_run(f"run-{n:02d}"))

        runs = await store.read_all("kanban")
        assert len(runs) == 20
        assert runs[0].id == "run-20"
        assert "run-00" not in {r.id for r in runs}

    async def test_custom_limit(self, session_factory):
        small = RunHistoryStore(session_factory, limit=2)
        for n in range(4):
            await small.append("kanban", make_run(f"run-{n}"))

        assert [r.id for r in await small.read_all("kanban")] == ["run-3", "run-2"]


class TestSummary:
    async def test_status_from_last_run(self, store: RunHistoryStore):
        await store.append("kanban", make_run("k1", passed=3, failed=1))
        await store.append("rental", make_run("r1", passed=0, failed=0, skipped=2))
        await store.append("calify", make_run("c1", passed=5))

        summary = await store.summary(
            [("kanban", "Kanban Board"), ("rental", "Rental Platform"), ("calify", "Calify")]
        )

        assert summary["kanban"].status == "failed"
        assert summary["kanban"].failed == 1
        assert summary["rental"].status == "unknown"
        assert summary["calify"].status == "passed"
        assert summary["calify"].total == 5

    async def test_project_without_runs(self, store: RunHistoryStore):
        summary = await store.summary([("kanban", "Kanban Board")])

        assert summary["kanban"].model_dump(by_alias=True) == {
            "name": "Kanban Board",
            "lastRun": None,
            "passed": 0,
            "failed": 0,
            "skipped": 0,
            "total": 0,
            "status": "unknown",
        }
