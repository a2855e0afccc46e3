"""Create the property schema, extensions and tables from the SQLAlchemy models"""
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from .connection import DatabaseManager
from .models import Base, SCHEMA

logger = structlog.get_logger(__name__)

EXTENSIONS = ("postgis", "unaccent")


async def create_all_tables(db_manager: DatabaseManager) -> list:
    """
    Initialize the schema used by the import and maintenance jobs.

    Idempotent: extensions, schema and tables are only created when missing.
    Returns the table names present in the schema afterwards.
    """
    schema_name = db_manager.connector.schema_name

    logger.info("enabling_extensions", extensions=list(EXTENSIONS))
    async with db_manager.connector.dedicated_connection() as conn:
        for extension in EXTENSIONS:
            await conn.execute(f'CREATE EXTENSION IF NOT EXISTS "{extension}"')
        await conn.execute(f'CREATE SCHEMA IF NOT EXISTS "{schema_name}"')

    logger.info("creating_tables", schema=schema_name)
    await _create_tables(db_manager.engine, schema_name)

    async with db_manager.connector.dedicated_connection() as conn:
        rows = await conn.fetch(
            "SELECT tablename FROM pg_tables WHERE schemaname = $1 ORDER BY tablename",
            schema_name,
        )
    table_names = [row['tablename'] for row in rows]
    logger.info("tables_ready", schema=schema_name, tables=table_names)
    return table_names


async def _create_tables(engine: AsyncEngine, schema_name: str) -> None:
    async with engine.begin() as conn:
        # Models are declared in the default schema; remap when DB_SCHEMA differs
        mapped = await conn.execution_options(schema_translate_map={SCHEMA: schema_name})
        await mapped.run_sync(Base.metadata.create_all, checkfirst=True)
