"""Run history and CI upload endpoints."""

import logging

from fastapi import APIRouter, Depends

from app.api.deps import (
    get_broadcaster,
    get_history_store,
    get_project_or_404,
    get_projects,
    validate_project_id,
)
from app.core.history import RunHistoryStore
from app.core.orchestrator import new_run_id
from app.schemas.project import ProjectDescriptor
from app.schemas.test_run import (
    ProjectResultSummary,
    RunHistory,
    RunRecord,
    UploadRequest,
)
from app.ws import ConnectionManager, utc_now_iso

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/results", response_model=dict[str, ProjectResultSummary])
async def results_summary(
    projects: dict[str, ProjectDescriptor] = Depends(get_projects),
    store: RunHistoryStore = Depends(get_history_store),
) -> dict[str, ProjectResultSummary]:
    """Last-run overview of every discovered project."""
    return await store.summary((p.id, p.name) for p in projects.values())


@router.get("/results/{project_id}", response_model=RunHistory)
async def project_results(
    project_id: str,
    projects: dict[str, ProjectDescriptor] = Depends(get_projects),
    store: RunHistoryStore = Depends(get_history_store),
) -> RunHistory:
    """The project's run log and last run; empty when it never ran."""
    get_project_or_404(project_id, projects)
    return await store.read_last(project_id)


@router.get("/history/{project_id}", response_model=list[RunRecord])
async def project_history(
    project_id: str,
    projects: dict[str, ProjectDescriptor] = Depends(get_projects),
    store: RunHistoryStore = Depends(get_history_store),
) -> list[RunRecord]:
    get_project_or_404(project_id, projects)
    return await store.read_all(project_id)


@router.post("/upload/{project_id}")
async def upload_results(
    upload: UploadRequest,
    project_id: str = Depends(validate_project_id),
    store: RunHistoryStore = Depends(get_history_store),
    broadcaster: ConnectionManager = Depends(get_broadcaster),
) -> dict:
    """Store results pushed by a CI pipeline.

    The project does not have to exist on this host; CI-only projects are
    tracked by id alone.
    """
    run = RunRecord(
        id=new_run_id(),
        timestamp=utc_now_iso(),
        stats=upload.stats,
        source=upload.source or "ci-upload",
        exit_code=1 if upload.stats.failed > 0 else 0,
        suites=upload.suites or [],
        errors=upload.errors or [],
    )
    await store.append(project_id, run)
    logger.info(
        "results: uploaded for %s: %d/%d passed (source: %s)",
        project_id,
        run.stats.passed,
        run.stats.total,
        run.source,
    )

    payload = run.model_dump(by_alias=True)
    await broadcaster.broadcast("results:uploaded", {"projectId": project_id, "run": payload})
    return {"message": "Results uploaded", "run": payload}
