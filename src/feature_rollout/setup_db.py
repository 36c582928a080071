from sqlalchemy.ext.asyncio import AsyncEngine

from . import db as db_mod
from .infrastructure.db.models import Base
from .logging_config import get_logger

logger = get_logger(__name__)


async def create_all(engine: AsyncEngine | None = None):
    """Create database tables using the configured async engine."""
    use_engine = engine or getattr(db_mod, "engine", None)
    if use_engine is None:
        raise RuntimeError("No engine available to create tables")
    try:
        async with use_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        logger.error(
            "create_all failed during startup; could not connect to the configured database."
            " Ensure your database is running or set DATABASE_URL to a reachable database"
            " (for local development `sqlite+aiosqlite:///./dev.db` works).",
            error=str(exc),
        )
        raise
    logger.info("database tables ensured", tables=sorted(Base.metadata.tables))
