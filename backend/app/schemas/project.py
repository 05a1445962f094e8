"""Pydantic schemas for discovered projects."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ProjectDescriptor(BaseModel):
    """A test-enabled project found on the host.

    Immutable for the duration of a run; re-discovered on every trigger.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str
    path: str
    base_url: str = Field(alias="baseUrl")
    port: int
    can_run_from_ui: bool = Field(default=True, alias="canRunFromUI")
