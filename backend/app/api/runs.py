"""Test run trigger endpoints.

Both endpoints only enqueue and acknowledge; progress and outcome arrive
over the WebSocket channel and in the run history.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_project_or_404, get_projects, get_run_queue
from app.core.queue import RunAlreadyActiveError, RunQueue
from app.core.validation import sanitize_grep
from app.schemas.project import ProjectDescriptor
from app.schemas.test_run import RunRequest

router = APIRouter()


@router.post("/run/{project_id}", status_code=status.HTTP_202_ACCEPTED)
async def run_project(
    project_id: str,
    run_in: RunRequest | None = None,
    projects: dict[str, ProjectDescriptor] = Depends(get_projects),
    queue: RunQueue = Depends(get_run_queue),
) -> dict:
    """Queue a test run for one project."""
    project = get_project_or_404(project_id, projects)

    if not project.can_run_from_ui:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Tests for {project_id} run via CI/CD pipeline, not from UI",
        )

    grep = sanitize_grep(run_in.grep if run_in else None)
    try:
        queue.submit(project_id, grep)
    except RunAlreadyActiveError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    return {"message": "Tests started", "projectId": project_id}


@router.post("/run-all", status_code=status.HTTP_202_ACCEPTED)
async def run_all_projects(
    run_in: RunRequest | None = None,
    projects: dict[str, ProjectDescriptor] = Depends(get_projects),
    queue: RunQueue = Depends(get_run_queue),
) -> dict:
    """Queue one sequential batch over every project runnable from the UI."""
    grep = sanitize_grep(run_in.grep if run_in else None)
    runnable = [p.id for p in projects.values() if p.can_run_from_ui]
    skipped = [p.id for p in projects.values() if not p.can_run_from_ui]

    queue.submit_batch(runnable, grep)
    return {
        "message": "Running tests for all projects",
        "projects": runnable,
        "skipped": skipped,
    }
