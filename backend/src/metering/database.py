"""Database session management with async SQLAlchemy.

The engine and session factory live on a per-process ``StoreContext``
created lazily on first use, so importing the package never requires a
configured store.
"""
import threading
from typing import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from metering.config import Settings, settings
from metering.exceptions import NotConfiguredError

# Declarative base for all models
Base = declarative_base()


class StoreContext:
    """Owns the async engine and session factory for one process."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, config: Settings) -> "StoreContext":
        """
        Build a store context from application settings.

        Raises:
            NotConfiguredError: If no database URL is configured
        """
        if not config.database_url:
            raise NotConfiguredError("Database credentials not configured")

        url = make_url(config.database_url)
        engine_kwargs: dict = {"echo": config.debug, "pool_pre_ping": True}
        if url.get_backend_name() == "postgresql":
            engine_kwargs.update(
                pool_size=20,
                max_overflow=10,
                pool_timeout=config.upstream_timeout_seconds,
                connect_args={
                    "timeout": config.upstream_timeout_seconds,
                    "command_timeout": config.upstream_timeout_seconds,
                },
            )
        return cls(create_async_engine(url, **engine_kwargs))

    async def dispose(self) -> None:
        await self.engine.dispose()


_store: StoreContext | None = None
_store_lock = threading.Lock()


def get_store() -> StoreContext:
    """Return the process-wide store context, creating it on first use."""
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                _store = StoreContext.from_settings(settings)
    return _store


def set_store(store: StoreContext | None) -> None:
    """Install (or clear) the process-wide store context."""
    global _store
    with _store_lock:
        _store = store


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Yields:
        AsyncSession: Database session for the request lifecycle
    """
    async with get_store().session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def dispose_store() -> None:
    """Close the process-wide engine, if one was created."""
    global _store
    with _store_lock:
        store, _store = _store, None
    if store is not None:
        await store.dispose()
