"""Shared service instances and FastAPI dependencies."""

from fastapi import HTTPException, status

from app.config import settings
from app.core.discovery import discover_projects
from app.core.history import RunHistoryStore
from app.core.orchestrator import RunOrchestrator
from app.core.queue import RunQueue
from app.core.validation import is_valid_project_id
from app.db.session import async_session_factory
from app.schemas.project import ProjectDescriptor
from app.ws import ConnectionManager, ws_manager

history_store = RunHistoryStore(async_session_factory, limit=settings.history_limit)
orchestrator = RunOrchestrator(history_store, ws_manager)
run_queue = RunQueue(orchestrator, workers=settings.run_workers)


def get_history_store() -> RunHistoryStore:
    return history_store


def get_run_queue() -> RunQueue:
    return run_queue


def get_broadcaster() -> ConnectionManager:
    return ws_manager


def get_projects() -> dict[str, ProjectDescriptor]:
    """Fresh project discovery for every request."""
    return discover_projects()


def validate_project_id(project_id: str) -> str:
    """Reject ids outside ``[A-Za-z0-9_-]`` before they reach a path or argument list."""
    if not is_valid_project_id(project_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid project ID",
        )
    return project_id


def get_project_or_404(
    project_id: str,
    projects: dict[str, ProjectDescriptor],
) -> ProjectDescriptor:
    """Validate the id and look the project up, or raise 400/404."""
    validate_project_id(project_id)
    project = projects.get(project_id)
    if project is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Project not found",
        )
    return project
