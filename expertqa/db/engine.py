# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Async SQLAlchemy with the asyncpg driver, created lazily so that importing
# the package (tests, CLI help, Celery autodiscovery) does not open a pool.
#
# Sessions are opened by SqlExpertStore.transaction(), one per logical
# mutation: create → begin → commit (or rollback on error) → close.
#
# Celery tasks call asyncio.run() once per task. A pooled engine is bound to
# the loop that created it, so workers build a NullPool engine per run via
# create_worker_engine().
# =============================================================================

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from expertqa.config import settings

_async_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_async_engine() -> AsyncEngine:
    """Lazily create and cache the API process engine."""
    global _async_engine
    if _async_engine is None:
        _async_engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
        )
    return _async_engine


def get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    """Lazily create and cache the session factory for the API engine."""
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            bind=get_async_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_factory


def create_worker_engine() -> AsyncEngine:
    """Engine for a single asyncio.run() inside a Celery task."""
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        poolclass=NullPool,
    )


async def dispose_engine() -> None:
    """Close pooled connections (application shutdown)."""
    global _async_engine, _async_session_factory
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_session_factory = None
