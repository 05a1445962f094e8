"""Pydantic schemas for API validation."""

from app.schemas.project import ProjectDescriptor
from app.schemas.test_run import (
    ProjectResultSummary,
    RunHistory,
    RunRecord,
    RunRequest,
    RunStats,
    UploadRequest,
)

__all__ = [
    "ProjectDescriptor",
    "ProjectResultSummary",
    "RunHistory",
    "RunRecord",
    "RunRequest",
    "RunStats",
    "UploadRequest",
]
