"""
Geometry Deriver

Keeps the derived point columns of property_point_view in line with the
x_coord/y_coord source columns:

- geom_raw: point in the source projected CRS (SOURCE_SRID)
- geom: geom_raw reprojected to WGS84 (EPSG:4326), the column map queries use

Rows without both coordinates keep (or get back to) null geometry. That is a
silent skip, not an error.
"""
from dataclasses import asdict, dataclass
from typing import Dict

import asyncpg
import structlog

from ..database.connection import parse_row_count
from ..database.models import SCHEMA, TARGET_SRID, qualified_name
from .upsert_merger import CANONICAL_TABLE

logger = structlog.get_logger(__name__)


@dataclass
class GeometryUpdateResult:
    cleared: int
    raw_updated: int
    projected_updated: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class GeometryDeriver:
    """Recomputes geom_raw and geom after a merge"""

    def __init__(self, source_srid: int, target_srid: int = TARGET_SRID, schema_name: str = SCHEMA):
        self.source_srid = source_srid
        self.target_srid = target_srid
        self.table = qualified_name(CANONICAL_TABLE, schema_name)

    async def derive(self, conn: asyncpg.Connection) -> GeometryUpdateResult:
        """Run the three set-based updates in order. Re-running is a no-op."""
        cleared = await self._clear_missing_coordinates(conn)
        raw_updated = await self._update_raw_geometry(conn)
        projected_updated = await self._update_projected_geometry(conn)

        result = GeometryUpdateResult(
            cleared=cleared,
            raw_updated=raw_updated,
            projected_updated=projected_updated,
        )
        logger.info("geometry_derivation_completed", **result.to_dict())
        return result

    async def _clear_missing_coordinates(self, conn: asyncpg.Connection) -> int:
        # A re-import may have dropped a coordinate that was present before
        status = await conn.execute(f"""
            UPDATE {self.table}
            SET geom_raw = NULL,
                geom = NULL
            WHERE (x_coord IS NULL OR y_coord IS NULL)
              AND (geom_raw IS NOT NULL OR geom IS NOT NULL)
        """)
        return parse_row_count(status)

    async def _update_raw_geometry(self, conn: asyncpg.Connection) -> int:
        status = await conn.execute(f"""
            UPDATE {self.table}
            SET geom_raw = ST_SetSRID(ST_MakePoint(x_coord, y_coord), $1::integer)
            WHERE x_coord IS NOT NULL
              AND y_coord IS NOT NULL
              AND geom_raw IS DISTINCT FROM ST_SetSRID(ST_MakePoint(x_coord, y_coord), $1::integer)
        """, self.source_srid)
        updated = parse_row_count(status)
        logger.info("raw_geometry_updated", rows=updated, srid=self.source_srid)
        return updated

    async def _update_projected_geometry(self, conn: asyncpg.Connection) -> int:
        status = await conn.execute(f"""
            UPDATE {self.table}
            SET geom = ST_Transform(geom_raw, $1::integer)
            WHERE geom_raw IS NOT NULL
              AND geom IS DISTINCT FROM ST_Transform(geom_raw, $1::integer)
        """, self.target_srid)
        updated = parse_row_count(status)
        logger.info("projected_geometry_updated", rows=updated, srid=self.target_srid)
        return updated
