"""
Data Maintenance Service

Batch passes over property_point_view that keep derived columns current:

- update-parent-folios: flag rows whose folio is another row's parent_folio
- update-meta: upsert per-parent children counts into property_meta
- run-all: both, in that order (update-meta reads the flag)

The parent flag is set-only by default: a property that loses its last child
keeps is_parent_folio = true and its property_meta row. Pass reconcile=True to
clear stale flags and delete stale metadata rows.

Every task opens its own connection and closes it whether or not it fails.
"""
import asyncio
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import asyncpg
import structlog

from ..database import PostgresConnector, parse_row_count, qualified_name
from ..database.models import SCHEMA

logger = structlog.get_logger(__name__)

PROPERTY_POINT_VIEW_TABLE = 'property_point_view'
PROPERTY_META_TABLE = 'property_meta'

# Server errors, client-side protocol misuse, dropped sockets and connect timeouts
DATABASE_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    asyncpg.exceptions.InternalClientError,
    OSError,
    asyncio.TimeoutError,
)


class MaintenanceTask(str, Enum):
    UPDATE_PARENT_FOLIOS = "update-parent-folios"
    UPDATE_META = "update-meta"
    RUN_ALL = "run-all"


@dataclass
class ParentFolioUpdate:
    total_updated: int
    parents_found: int
    non_parents_found: int
    total_cleared: int = 0


@dataclass
class MetaUpdate:
    total_upserted: int
    total_parents_processed: int
    total_deleted: int = 0


@dataclass
class MaintenanceResult:
    """Structured outcome handed back to the CLI"""
    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        if self.error is None:
            result.pop('error')
        return result


class DataMaintenanceService:
    """Runs the parent-folio and property_meta maintenance statements"""

    def __init__(self, connector: PostgresConnector, schema_name: str = SCHEMA):
        self.connector = connector
        self.points_table = qualified_name(PROPERTY_POINT_VIEW_TABLE, schema_name)
        self.meta_table = qualified_name(PROPERTY_META_TABLE, schema_name)

    async def update_parent_folio_flags(self, reconcile: bool = False) -> ParentFolioUpdate:
        """
        Set is_parent_folio = true on every row referenced by another row's parent_folio.

        Only rows where the flag is false or null are touched. With reconcile,
        rows flagged true that nobody references any more are reset to false.

        Returns:
            Rows updated plus a full parent / non-parent recount
        """
        logger.info("parent_folio_update_started", reconcile=reconcile)

        async with self.connector.dedicated_connection() as conn:
            status = await conn.execute(f"""
                UPDATE {self.points_table} p
                SET is_parent_folio = true
                FROM (
                    SELECT DISTINCT parent_folio
                    FROM {self.points_table}
                    WHERE parent_folio IS NOT NULL
                      AND parent_folio <> ''
                ) c
                WHERE p.folio = c.parent_folio
                  AND (NOT p.is_parent_folio OR p.is_parent_folio IS NULL)
            """)
            rows_updated = parse_row_count(status)
            logger.info("parent_folios_marked", rows=rows_updated)

            rows_cleared = 0
            if reconcile:
                rows_cleared = await self._clear_stale_parent_flags(conn)

            counts = await conn.fetchrow(f"""
                SELECT
                    COUNT(*) FILTER (WHERE is_parent_folio = true) AS parent_count,
                    COUNT(*) FILTER (WHERE is_parent_folio = false OR is_parent_folio IS NULL) AS non_parent_count,
                    COUNT(*) AS total_count
                FROM {self.points_table}
            """)

        result = ParentFolioUpdate(
            total_updated=rows_updated,
            parents_found=int(counts['parent_count']),
            non_parents_found=int(counts['non_parent_count']),
            total_cleared=rows_cleared,
        )
        logger.info(
            "parent_folio_update_completed",
            total_properties=int(counts['total_count']),
            **asdict(result),
        )
        return result

    async def update_meta(self, reconcile: bool = False) -> MetaUpdate:
        """
        Recompute children_count for every flagged parent and upsert it into property_meta.

        Children are rows whose parent_folio equals the parent's folio, the
        parent itself excluded by objectid. Relies on the parent flags being
        current; run update_parent_folio_flags first.
        """
        logger.info("property_meta_update_started", reconcile=reconcile)

        async with self.connector.dedicated_connection() as conn:
            total_parents = await conn.fetchval(f"""
                SELECT COUNT(*)
                FROM {self.points_table}
                WHERE is_parent_folio = true
            """)
            total_parents = int(total_parents or 0)
            if total_parents == 0:
                logger.warning("no_parent_folios_flagged", hint="run update-parent-folios first")

            status = await conn.execute(f"""
                INSERT INTO {self.meta_table} (object_id, folio, children_count)
                SELECT
                    p.objectid,
                    p.folio,
                    COUNT(c.objectid) AS children_count
                FROM {self.points_table} p
                INNER JOIN {self.points_table} c
                    ON c.parent_folio = p.folio
                    AND c.parent_folio IS NOT NULL
                    AND c.parent_folio <> ''
                    AND c.objectid <> p.objectid
                WHERE p.is_parent_folio = true
                GROUP BY p.objectid, p.folio
                ON CONFLICT (object_id)
                DO UPDATE SET
                    children_count = EXCLUDED.children_count,
                    folio = EXCLUDED.folio
            """)
            rows_upserted = parse_row_count(status)
            logger.info("property_meta_upserted", rows=rows_upserted)

            rows_deleted = 0
            if reconcile:
                rows_deleted = await self._delete_stale_meta(conn)

        result = MetaUpdate(
            total_upserted=rows_upserted,
            total_parents_processed=total_parents,
            total_deleted=rows_deleted,
        )
        logger.info("property_meta_update_completed", **asdict(result))
        return result

    async def _clear_stale_parent_flags(self, conn: asyncpg.Connection) -> int:
        status = await conn.execute(f"""
            UPDATE {self.points_table} p
            SET is_parent_folio = false
            WHERE p.is_parent_folio = true
              AND NOT EXISTS (
                  SELECT 1
                  FROM {self.points_table} c
                  WHERE c.parent_folio = p.folio
                    AND c.parent_folio <> ''
              )
        """)
        cleared = parse_row_count(status)
        logger.info("stale_parent_flags_cleared", rows=cleared)
        return cleared

    async def _delete_stale_meta(self, conn: asyncpg.Connection) -> int:
        status = await conn.execute(f"""
            DELETE FROM {self.meta_table} m
            WHERE NOT EXISTS (
                SELECT 1
                FROM {self.points_table} p
                WHERE p.objectid = m.object_id
                  AND p.is_parent_folio = true
            )
        """)
        deleted = parse_row_count(status)
        logger.info("stale_property_meta_deleted", rows=deleted)
        return deleted


async def run_maintenance_task(
    service: DataMaintenanceService,
    task: MaintenanceTask,
    reconcile: bool = False,
) -> MaintenanceResult:
    """
    Execute one maintenance task and convert the outcome into a MaintenanceResult.

    Database errors are logged and returned as success=False instead of being
    raised. run-all reports the steps that finished before a failure.
    """
    task = MaintenanceTask(task)
    logger.info("data_maintenance_started", task=task.value, reconcile=reconcile)

    if task is MaintenanceTask.RUN_ALL:
        return await _run_all(service, reconcile)

    try:
        if task is MaintenanceTask.UPDATE_PARENT_FOLIOS:
            parent_update = await service.update_parent_folio_flags(reconcile=reconcile)
            return MaintenanceResult(
                success=True,
                message="Parent folio flags updated successfully",
                data=asdict(parent_update),
            )

        meta_update = await service.update_meta(reconcile=reconcile)
        return MaintenanceResult(
            success=True,
            message="Property metadata updated successfully in property_meta",
            data=asdict(meta_update),
        )

    except DATABASE_ERRORS as e:
        logger.error("data_maintenance_failed", task=task.value, error=str(e))
        return MaintenanceResult(
            success=False,
            message="Failed to complete data maintenance task",
            error=str(e),
        )


async def _run_all(service: DataMaintenanceService, reconcile: bool) -> MaintenanceResult:
    tasks: List[Dict[str, Any]] = []
    steps = (
        (MaintenanceTask.UPDATE_PARENT_FOLIOS, service.update_parent_folio_flags),
        (MaintenanceTask.UPDATE_META, service.update_meta),
    )

    for index, (step, run_step) in enumerate(steps, start=1):
        logger.info("data_maintenance_step_started", step=f"{index}/{len(steps)}", task=step.value)
        try:
            outcome = await run_step(reconcile=reconcile)
        except DATABASE_ERRORS as e:
            logger.error("data_maintenance_step_failed", task=step.value, error=str(e))
            tasks.append({"name": step.value, "success": False, "error": str(e)})
            return MaintenanceResult(
                success=False,
                message=f"Data maintenance stopped at {step.value}",
                data={"tasks": tasks},
                error=str(e),
            )
        tasks.append({"name": step.value, "success": True, "data": asdict(outcome)})

    logger.info("data_maintenance_completed", tasks=len(tasks))
    return MaintenanceResult(
        success=True,
        message="All data maintenance tasks completed successfully",
        data={"tasks": tasks},
    )
