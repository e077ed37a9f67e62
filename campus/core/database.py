"""Database configuration and session management."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

# SQLAlchemy Base for ORM models
Base = declarative_base()


def _engine_options(settings: Settings, url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            options["poolclass"] = StaticPool
        return options
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_timeout": settings.database_pool_timeout,
        "pool_recycle": settings.database_pool_recycle,
    }


class DatabaseManager:
    """Database connection and session management."""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._async_engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    def configure(self, url: Optional[str] = None) -> None:
        """Create the async engine and session factory."""
        from campus.core.isolation import TenantSession, install_tenant_guard

        url = url or self._settings.database_url
        self._async_engine = create_async_engine(
            url,
            echo=self._settings.debug,
            **_engine_options(self._settings, url),
        )
        self._session_factory = async_sessionmaker(
            self._async_engine,
            class_=AsyncSession,
            sync_session_class=TenantSession,
            expire_on_commit=False,
            autoflush=False,
        )
        install_tenant_guard(self._settings)
        logger.info(f"Database configured ({self._async_engine.dialect.name})")

    @property
    def engine(self) -> AsyncEngine:
        if self._async_engine is None:
            self.configure()
        return self._async_engine

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self.configure()
        return self._session_factory

    async def connect(self) -> None:
        """Initialize database connections."""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database async connection established")
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            raise

    async def create_all(self) -> None:
        """Create all tables (development and tests; production uses migrations)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def disconnect(self) -> None:
        """Close database connections."""
        try:
            if self._async_engine:
                await self._async_engine.dispose()
            logger.info("Database connections closed")
        except Exception as e:
            logger.error(f"Error closing database connections: {e}")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get async database session."""
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise


# Global database manager instance
_db_manager = DatabaseManager()


def get_database() -> DatabaseManager:
    """Get the database manager instance."""
    return _db_manager


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session for FastAPI."""
    async with get_database().get_session() as session:
        yield session


def set_tenant_context(connection, tenant_id: str) -> None:
    """Set tenant context for Row-Level Security on a connection.

    Transaction-local: the setting is cleared when the transaction ends.
    """
    try:
        connection.execute(
            text("SELECT set_config('app.current_tenant_id', :tenant_id, true)"),
            {"tenant_id": tenant_id}
        )
        logger.debug(f"Set tenant context to: {tenant_id}")
    except Exception as e:
        logger.error(f"Failed to set tenant context: {e}")
        raise


def set_tenant_search_path(connection, schema_name: str) -> None:
    """Point the transaction's search_path at a tenant schema."""
    try:
        connection.execute(text(f'SET LOCAL search_path TO "{schema_name}", public'))
        logger.debug(f"Set search_path to: {schema_name}")
    except Exception as e:
        logger.error(f"Failed to set tenant search_path: {e}")
        raise
