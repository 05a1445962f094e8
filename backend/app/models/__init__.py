"""Database models."""

from app.models.test_run import TestRun

__all__ = ["TestRun"]
