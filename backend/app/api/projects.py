"""Project discovery endpoints."""

from fastapi import APIRouter, Depends

from app.api.deps import get_projects
from app.schemas.project import ProjectDescriptor

router = APIRouter()


@router.get("/projects", response_model=list[ProjectDescriptor])
async def list_projects(
    projects: dict[str, ProjectDescriptor] = Depends(get_projects),
) -> list[ProjectDescriptor]:
    """List every test-enabled project found on the host."""
    return list(projects.values())
