"""Database engine and session management."""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from spxhub.config import DatabaseConfig
from spxhub.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class Database:
    """Owns the async engine and session factory.

    Constructed by the process entry point, initialised at startup and
    closed at shutdown. Nothing here is module-global.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        url = self._config.url
        engine_kwargs: dict = {"echo": self._config.echo, "pool_pre_ping": True}
        if not url.startswith("sqlite"):
            engine_kwargs.update(
                pool_size=self._config.pool_size,
                max_overflow=self._config.max_overflow,
                pool_recycle=3600,
            )

        self._engine = create_async_engine(url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        try:
            async with self._engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                if self._config.create_schema:
                    await conn.run_sync(SQLModel.metadata.create_all)
            logger.info(
                "Database connected",
                extra={
                    "event": LogEvent.DB_CONNECTED,
                    "pool_size": self._config.pool_size,
                    "max_overflow": self._config.max_overflow,
                },
            )
        except Exception as e:
            logger.error(
                "Database connection failed",
                extra={
                    "event": LogEvent.DB_ERROR,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            raise

    async def close(self) -> None:
        if self._engine:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized")
        return self._session_factory
