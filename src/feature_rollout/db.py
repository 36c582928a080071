from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import Settings

# Database engine and session factory, registered at startup by the composition root
engine: Optional[Any] = None
AsyncDbSessionFactory: Any = None


def database_url_for(settings: Settings) -> str:
    # Allow a full DATABASE URL override (useful for tests)
    if settings.database_url:
        return settings.database_url
    return (
        f"postgresql+asyncpg://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def create_engine(settings: Settings) -> Any:
    """Create and return an async engine for the given settings and register it
    on the module so other modules (or tests) can rebind or inspect it.

    Pool sizing only applies to PostgreSQL; SQLite uses SQLAlchemy's defaults.
    """
    global engine
    database_url = database_url_for(settings)

    kwargs: dict = {"echo": False}
    if "postgresql" in database_url:
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle,
            pool_pre_ping=settings.db_pool_pre_ping,
            connect_args={"command_timeout": 30},  # 30-second statement timeout
        )

    engine = create_async_engine(database_url, **kwargs)
    return engine


def create_sessionmaker(bind_engine: Any) -> Any:
    """Create and register an AsyncSession factory bound to the provided engine."""
    global AsyncDbSessionFactory
    AsyncDbSessionFactory = async_sessionmaker(
        bind=bind_engine, expire_on_commit=False, class_=AsyncSession
    )
    return AsyncDbSessionFactory

