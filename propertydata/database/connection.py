"""Database connection management for propertydata"""

import ssl
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Union

import asyncpg
import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ..config import (
    Settings,
    build_database_config,
    build_database_url,
    build_ssl_argument,
    normalize_database_url,
)

logger = structlog.get_logger(__name__)


class PostgresConnector:
    """Opens asyncpg connections for one resolved connection target"""

    def __init__(
        self,
        dsn: str,
        schema_name: str,
        ssl_argument: Optional[Union[bool, ssl.SSLContext]] = None,
    ):
        self.dsn = dsn
        self.schema_name = schema_name
        self.ssl_argument = ssl_argument

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostgresConnector":
        """
        Resolve the connection target.

        DATABASE_URL wins when set; otherwise the discrete DB_* variables are
        required and a MissingDatabaseSettingError names the first one absent.
        """
        if settings.DATABASE_URL:
            dsn, schema_name = normalize_database_url(settings.DATABASE_URL)
            return cls(dsn=dsn, schema_name=schema_name or settings.DB_SCHEMA)

        config = build_database_config(settings)
        return cls(
            dsn=build_database_url(config),
            schema_name=config.schema_name,
            ssl_argument=build_ssl_argument(config),
        )

    async def connect(self) -> asyncpg.Connection:
        """Open a new connection with search_path set to the property schema."""
        kwargs = {"server_settings": {"search_path": f"{self.schema_name},public"}}
        if self.ssl_argument is not None:
            kwargs["ssl"] = self.ssl_argument
        return await asyncpg.connect(self.dsn, **kwargs)

    @asynccontextmanager
    async def dedicated_connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """Short-lived connection for bulk work, closed on success and failure."""
        connection = await self.connect()
        logger.info("database_connected", schema=self.schema_name)
        try:
            yield connection
        finally:
            await connection.close()
            logger.info("database_connection_closed")


class DatabaseManager:
    """Manages the pooled SQLAlchemy engine used by read paths"""

    def __init__(self, connector: PostgresConnector, echo: bool = False):
        self.connector = connector
        self.echo = echo
        self.engine = None
        self.async_session_maker = None

    async def initialize(self):
        """Initialize the async engine and session factory"""
        try:
            # Pooled connections are opened through the same connector so TLS
            # and search_path match the bulk connections
            self.engine = create_async_engine(
                "postgresql+asyncpg://",
                async_creator=self.connector.connect,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
                echo=self.echo,
            )

            self.async_session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            logger.info("database_engine_initialized")

        except Exception as e:
            logger.error("database_engine_initialization_failed", error=str(e))
            raise

    async def close(self):
        """Dispose of the engine"""
        if self.engine:
            await self.engine.dispose()
            logger.info("database_engine_disposed")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get SQLAlchemy async session"""
        if not self.async_session_maker:
            raise RuntimeError("Database not initialized")

        async with self.async_session_maker() as session:
            try:
                yield session
            except Exception as e:
                await session.rollback()
                logger.error("database_session_error", error=str(e))
                raise

    async def health_check(self) -> bool:
        """Check that the pool can run a trivial query"""
        try:
            async with self.get_session() as session:
                result = await session.execute(text("SELECT 1"))
                return result.scalar() == 1
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            return False


def parse_row_count(status: Optional[str]) -> int:
    """
    Extract the affected row count from an asyncpg command status.

    'UPDATE 12' -> 12, 'INSERT 0 5' -> 5, 'COPY 100' -> 100.
    """
    if not status:
        return 0
    tail = status.rsplit(" ", 1)[-1]
    return int(tail) if tail.isdigit() else 0
