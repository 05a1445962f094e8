"""HTTP API module."""

from fastapi import APIRouter

from app.api.projects import router as projects_router
from app.api.results import router as results_router
from app.api.runs import router as runs_router

router = APIRouter()

router.include_router(projects_router, tags=["Projects"])
router.include_router(results_router, tags=["Results"])
router.include_router(runs_router, tags=["Test Runs"])
