"""Discovery of Playwright-enabled projects under the projects base directory."""

from __future__ import annotations

import logging
from pathlib import Path

from app.config import Settings, settings as default_settings
from app.schemas.project import ProjectDescriptor

logger = logging.getLogger(__name__)

PLAYWRIGHT_CONFIG = "playwright.config.js"


def discover_projects(settings: Settings | None = None) -> dict[str, ProjectDescriptor]:
    """Return project id → descriptor for every ``<base>/<dir>/backend`` with e2e tests.

    A project qualifies when its backend folder holds both an ``e2e/``
    directory and ``playwright.config.js``. Called fresh on every trigger so
    projects added or removed at runtime are picked up.
    """
    cfg = settings or default_settings
    base = Path(cfg.projects_base)
    projects: dict[str, ProjectDescriptor] = {}

    try:
        entries = sorted(base.iterdir(), key=lambda p: p.name)
    except OSError as exc:
        logger.error("discovery: cannot read projects base %s: %s", base, exc)
        return projects

    for entry in entries:
        backend = entry / "backend"
        try:
            if not (backend / "e2e").is_dir() or not (backend / PLAYWRIGHT_CONFIG).is_file():
                continue
        except OSError:
            continue

        project_id = entry.name
        port = cfg.project_ports.get(project_id, cfg.default_project_port)
        projects[project_id] = ProjectDescriptor(
            id=project_id,
            name=cfg.project_names.get(project_id, project_id),
            path=str(backend),
            base_url=f"http://{cfg.project_host}:{port}",
            port=port,
            can_run_from_ui=project_id not in cfg.self_test_projects,
        )

    logger.debug("discovery: found %d project(s): %s", len(projects), list(projects))
    return projects
