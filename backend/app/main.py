"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.requests import Request

from app.api import router as api_router
from app.api.deps import run_queue
from app.config import settings
from app.core.discovery import discover_projects
from app.db.session import engine, init_db
from app.ws import ws_endpoint, ws_manager

logger = logging.getLogger("app.main")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan context manager."""
    # Startup
    logging.getLogger("app").setLevel(settings.log_level.upper())
    await init_db()
    run_queue.start()
    logger.info("Discovered projects: %s", list(discover_projects()))
    yield
    # Shutdown
    await run_queue.stop()
    await engine.dispose()


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Dashboard that runs Playwright suites and tracks their results live",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    cors_kw: dict[str, Any] = {
        "allow_origins": list(settings.cors_origins),
        "allow_credentials": True,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
    }
    # In development, allow any localhost origin
    if settings.environment == "development":
        cors_kw["allow_origin_regex"] = r"http://(localhost|127\.0\.0\.1)(:\d+)?"
    app.add_middleware(CORSMiddleware, **cors_kw)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> Response:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> Response:
        """Return JSON 500 instead of a bare error page."""
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, Any]:
        return {
            "status": "healthy",
            "service": "test-dashboard",
            "version": settings.app_version,
            "clients": ws_manager.connection_count,
        }

    # Live run events
    @app.websocket("/ws")
    async def ws_events(websocket: WebSocket) -> None:
        await ws_endpoint(websocket)

    app.include_router(api_router, prefix="/api")

    return app


app = create_application()
