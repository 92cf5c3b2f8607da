"""Database handle — async SQLAlchemy engine plus session factory.

The handle is constructed explicitly (usually once, in the app factory) and
passed to whoever needs it; nothing here keeps a module-level connection.

    db = Database(settings.database_url)
    await db.open()
    async with db.session() as session:
        ...
    await db.close()
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from agentage.core.logging import get_logger
from agentage.models import Base

logger = get_logger(__name__)


class Database:
    """Owns one engine and hands out sessions bound to it."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not open")
        return self._engine

    async def open(self) -> None:
        if self._engine is not None:
            return
        connect_args = {}
        if self.url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self._engine = create_async_engine(
            self.url,
            echo=self._echo,
            pool_pre_ping=not self.url.startswith("sqlite"),
            connect_args=connect_args,
        )
        self._session_factory = async_sessionmaker(
            self._engine, expire_on_commit=False, autoflush=True
        )
        logger.info("Database engine created", dialect=self._engine.dialect.name)

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Database engine disposed")

    async def create_all(self) -> None:
        """Create every table directly (tests and local development only)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session; commit on success, roll back on any error."""
        if self._session_factory is None:
            await self.open()
        assert self._session_factory is not None
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
