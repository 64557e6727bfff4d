"""Database connection and session management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from truthchain.core.logging import get_logger
from truthchain.database.base import Base

logger = get_logger(__name__)


def to_async_url(database_url: str) -> str:
    """Convert a Postgres URL to the asyncpg driver."""
    if database_url.startswith("postgresql+psycopg2://"):
        return database_url.replace("postgresql+psycopg2://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    return database_url


class Database:
    """Owns the async engine and session factory.

    Created by the application lifespan and disposed at shutdown.
    """

    def __init__(self, database_url: str, pool_size: int = 10, echo: bool = False):
        self.url = to_async_url(database_url)
        self.pool_size = pool_size
        self.echo = echo
        self.engine: AsyncEngine | None = None
        self.session_factory: async_sessionmaker[AsyncSession] | None = None

    def connect(self) -> None:
        """Create the engine and session factory."""
        if self.engine is not None:
            return
        self.engine = create_async_engine(
            self.url,
            pool_size=self.pool_size,
            max_overflow=0,
            pool_pre_ping=True,
            echo=self.echo,
        )
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def create_tables(self) -> None:
        if self.engine is None:
            raise RuntimeError("Database not connected")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_tables_ready")

    async def health_check(self) -> bool:
        if self.engine is None:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.error("database_health_check_failed", error=str(e))
            return False

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Open a session.

        Raises:
            RuntimeError: If the database is not connected
        """
        if self.session_factory is None:
            raise RuntimeError("Database not initialized - cannot create session")
        async with self.session_factory() as session:
            yield session

    async def dispose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None
