"""Database session management."""

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import settings
from app.db.base import Base


def _engine_options(url: str) -> dict[str, Any]:
    # SQLite (used for local runs) has no connection pool to size
    if url.startswith("sqlite"):
        return {"echo": settings.debug}
    return {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
    }


# Create async engine
engine: AsyncEngine = create_async_engine(
    str(settings.database_url),
    **_engine_options(str(settings.database_url)),
)

# Create async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create the run-history tables if they do not exist yet."""
    import app.models  # noqa: F401  registers models on Base.metadata

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
