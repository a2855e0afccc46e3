"""
Upsert Merger

Merges the staging table into property_point_view with a single
INSERT ... SELECT ... ON CONFLICT (objectid) DO UPDATE statement.

During the merge:
- condo_flag becomes a boolean: 'y' (any case) is true, anything else false
- search_all is rebuilt from folio, address, owner and classification fields
- created_at is only set on insert, updated_at on every write
"""
import asyncpg
import structlog

from ..database.connection import parse_row_count
from ..database.models import PROPERTY_POINT_VIEW_COLUMNS, SCHEMA, qualified_name
from .bulk_loader import STAGING_TABLE

logger = structlog.get_logger(__name__)

CANONICAL_TABLE = 'property_point_view'

# Lossy: the raw staging string is not kept
CONDO_FLAG_EXPRESSION = "COALESCE(LOWER(s.condo_flag) = 'y', false)"

SEARCH_FIELDS = (
    'folio',
    'true_site_addr',
    'true_site_unit',
    'true_site_city',
    'true_owner1',
    'true_owner2',
    'true_owner3',
    'dor_desc',
    'subdivision',
)


def search_all_expression(alias: str = 's') -> str:
    """Lower-cased, unaccented, space-joined search text; nulls count as ''."""
    parts = [f"COALESCE({alias}.{field}::text, '')" for field in SEARCH_FIELDS]
    joined = " || ' ' || ".join(parts)
    return f"LOWER(unaccent({joined}))"


def build_merge_sql(schema_name: str = SCHEMA) -> str:
    """Render the staging -> canonical upsert statement."""
    select_columns = [
        CONDO_FLAG_EXPRESSION if column == 'condo_flag' else f"s.{column}"
        for column in PROPERTY_POINT_VIEW_COLUMNS
    ]
    insert_columns = list(PROPERTY_POINT_VIEW_COLUMNS) + ['search_all', 'created_at', 'updated_at']
    select_columns += [search_all_expression('s'), 'NOW()', 'NOW()']

    update_columns = [c for c in PROPERTY_POINT_VIEW_COLUMNS if c != 'objectid'] + ['search_all']
    update_clause = ",\n            ".join(f"{c} = EXCLUDED.{c}" for c in update_columns)

    # DISTINCT ON keeps the last staged row per objectid; ON CONFLICT cannot
    # touch the same target row twice in one statement
    return f"""
        INSERT INTO {qualified_name(CANONICAL_TABLE, schema_name)} (
            {", ".join(insert_columns)}
        )
        SELECT
            {", ".join(select_columns)}
        FROM (
            SELECT DISTINCT ON (objectid) *
            FROM {qualified_name(STAGING_TABLE, schema_name)}
            WHERE objectid IS NOT NULL
            ORDER BY objectid, id DESC
        ) s
        ON CONFLICT (objectid) DO UPDATE SET
            {update_clause},
            updated_at = NOW()
    """


class UpsertMerger:
    """Merges staged rows into canonical storage"""

    def __init__(self, schema_name: str = SCHEMA):
        self.schema_name = schema_name
        self._merge_sql = build_merge_sql(schema_name)

    async def merge(self, conn: asyncpg.Connection) -> int:
        """Run the upsert and return the number of rows inserted or updated."""
        logger.info("merge_started", source=STAGING_TABLE, target=CANONICAL_TABLE)
        try:
            status = await conn.execute(self._merge_sql)
        except Exception as e:
            logger.error("merge_failed", target=CANONICAL_TABLE, error=str(e))
            raise

        affected = parse_row_count(status)
        logger.info("merge_completed", target=CANONICAL_TABLE, rows_affected=affected)
        return affected
