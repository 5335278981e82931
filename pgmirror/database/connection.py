from typing import Optional, AsyncGenerator
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    AsyncEngine,
    async_sessionmaker
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from contextlib import asynccontextmanager

from ..core.config import DatabaseConfig
from ..core.exceptions import DatabaseConnectionError
from ..utils.logger import LoggerSetup

logger = LoggerSetup.setup(__name__)

class DatabaseConnection:
    """
    Database connection manager.
    Owns the async engine and its pool, and hands out short-lived sessions.
    """
    def __init__(self, config: DatabaseConfig, name: str):
        self.url = config.url
        self.name = name
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._engine_options = config.get_engine_options()

    async def initialize(self) -> None:
        """
        Create the engine and verify the database is reachable.

        Raises:
            DatabaseConnectionError: If the engine cannot be created or the
                connection check fails
        """
        if self.engine is not None:
            return

        try:
            self.engine = create_async_engine(self.url, **self._engine_options)
            self.session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False
            )

            async with self.session() as session:
                await session.execute(text("SELECT 1"))

            logger.info(f"Connected to {self.name} database")

        except (SQLAlchemyError, OSError, ValueError) as e:
            await self.close()
            raise DatabaseConnectionError(f"Failed to connect to {self.name} database: {e}") from e

    async def close(self) -> None:
        """Close database connection and cleanup"""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get a database session that commits on success and rolls back on error.

        Raises:
            SQLAlchemyError: If database is not initialized
        """
        if not self.session_factory:
            raise SQLAlchemyError("Database not initialized")

        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

