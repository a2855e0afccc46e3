"""
Property Point View Import

Runs the full import pipeline for neurastate.property_point_view:

1. Resolve the CSV URL (explicit argument > settings row > PROPERTY_IMPORT_URL)
2. Stream the CSV into staging (bulk_loader)
3. Merge staging into the canonical table (upsert_merger)
4. Derive geometry (geometry)
5. Count canonical rows

Every step runs on one dedicated asyncpg connection, closed on every path.
Failures are not retried; re-run the command.
"""
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import structlog

from ..config import Settings
from ..database import DatabaseManager, PostgresConnector, qualified_name
from .bulk_loader import PropertyPointViewLoader
from .geometry import GeometryDeriver, GeometryUpdateResult
from .settings_service import SettingsService
from .upsert_merger import CANONICAL_TABLE, UpsertMerger

logger = structlog.get_logger(__name__)


@dataclass
class ImportResult:
    """Summary of one import run"""
    import_url: str
    bytes_streamed: int
    rows_staged: int
    rows_merged: int
    geometry: GeometryUpdateResult
    total_rows: int
    header_matches: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PropertyImportService:
    """Imports the external property dataset into Postgres"""

    def __init__(
        self,
        connector: PostgresConnector,
        db_manager: DatabaseManager,
        default_import_url: str,
        loader: PropertyPointViewLoader,
        merger: UpsertMerger,
        geometry_deriver: GeometryDeriver,
    ):
        self.connector = connector
        self.db_manager = db_manager
        self.default_import_url = default_import_url
        self.loader = loader
        self.merger = merger
        self.geometry_deriver = geometry_deriver

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        connector: PostgresConnector,
        db_manager: DatabaseManager,
    ) -> "PropertyImportService":
        schema_name = connector.schema_name
        return cls(
            connector=connector,
            db_manager=db_manager,
            default_import_url=settings.PROPERTY_IMPORT_URL,
            loader=PropertyPointViewLoader(
                schema_name=schema_name,
                chunk_size_bytes=settings.CSV_CHUNK_SIZE_BYTES,
            ),
            merger=UpsertMerger(schema_name=schema_name),
            geometry_deriver=GeometryDeriver(
                source_srid=settings.SOURCE_SRID,
                schema_name=schema_name,
            ),
        )

    async def import_property_point_view(self, url: Optional[str] = None) -> ImportResult:
        """
        Import the property CSV and return a summary.

        Raises:
            CsvDownloadError: the source could not be fetched
            asyncpg.PostgresError: COPY, merge or geometry statement failed
        """
        import_url = await self.resolve_import_url(url)
        logger.info("property_import_started", url=import_url)

        async with self.loader.open_csv(import_url) as response:
            async with self.connector.dedicated_connection() as conn:
                staged = await self.loader.stage(conn, response)
                rows_merged = await self.merger.merge(conn)
                geometry = await self.geometry_deriver.derive(conn)
                total_rows = await conn.fetchval(
                    f"SELECT COUNT(*) FROM {qualified_name(CANONICAL_TABLE, self.connector.schema_name)}"
                )

        if staged.rows_copied and rows_merged < staged.rows_copied:
            logger.warning(
                "staged_rows_not_merged",
                rows_staged=staged.rows_copied,
                rows_merged=rows_merged,
            )

        result = ImportResult(
            import_url=import_url,
            bytes_streamed=staged.bytes_streamed,
            rows_staged=staged.rows_copied,
            rows_merged=rows_merged,
            geometry=geometry,
            total_rows=int(total_rows or 0),
            header_matches=staged.header_matches,
        )
        logger.info("property_import_completed", total_rows=result.total_rows, rows_merged=rows_merged)
        return result

    async def resolve_import_url(self, explicit_url: Optional[str] = None) -> str:
        """Explicit URL, then the settings row, then the configured default."""
        if explicit_url:
            return explicit_url

        async with self.db_manager.get_session() as session:
            configured_url = await SettingsService(session).get_import_url()

        if configured_url:
            logger.info("import_url_from_settings")
            return configured_url

        return self.default_import_url
