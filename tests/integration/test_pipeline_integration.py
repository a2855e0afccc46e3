"""
PostGIS integration tests for the import, maintenance and map pipeline.

These tests require:
- DATABASE_URL pointing at a PostgreSQL server with PostGIS and unaccent available
- RUN_INTEGRATION_TESTS=true environment variable

Each test builds its own throwaway schema with init-db and drops it afterwards.

Run with: pytest tests/integration -v
"""
import os
import uuid
from contextlib import asynccontextmanager

import pytest

from propertydata.config import normalize_database_url
from propertydata.database import DatabaseManager, PostgresConnector, qualified_name
from propertydata.database.init_database import create_all_tables
from propertydata.services.bulk_loader import STAGING_TABLE
from propertydata.services.data_maintenance import (
    DataMaintenanceService,
    MaintenanceTask,
    run_maintenance_task,
)
from propertydata.services.geometry import GeometryDeriver
from propertydata.services.map_service import (
    BoundingBox,
    MapPropertyFilters,
    MapService,
    ZoomTooLowError,
)
from propertydata.services.upsert_merger import CANONICAL_TABLE, UpsertMerger

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not os.environ.get("RUN_INTEGRATION_TESTS", "").lower() == "true"
        or not os.environ.get("DATABASE_URL"),
        reason="Integration tests disabled. Set RUN_INTEGRATION_TESTS=true and DATABASE_URL to enable.",
    ),
]

# State Plane Florida East (US feet); the base point sits in Miami-Dade
SOURCE_SRID = 2236
BASE_X = 920000.0
BASE_Y = 520000.0

STAGED_COLUMNS = [
    "objectid",
    "folio",
    "parent_folio",
    "condo_flag",
    "x_coord",
    "y_coord",
    "true_site_addr",
    "true_owner1",
]

STAGED_ROWS = [
    (1, "0100", None, "N", BASE_X, BASE_Y, "100 Main St", "Ana Pérez"),
    (2, "0101", "0100", "Y", BASE_X, BASE_Y, "100 Main St", "Unit Owner"),
    (3, "0102", "0100", "y", BASE_X + 10, BASE_Y + 10, "100 Main St", "Unit Owner"),
    (4, "0103", "0100", "", BASE_X + 20, BASE_Y + 20, "102 Main St", "Owner Four"),
    (5, "0104", "0100", None, BASE_X + 30, BASE_Y + 30, "104 Main St", "Owner Five"),
    (6, "0105", "0100", "0", BASE_X + 40, BASE_Y + 40, "106 Main St", "Owner Six"),
    (7, "0200", "", "N", None, None, "No Coordinates Rd", "Owner Seven"),
    (8, "0300", "", "n", BASE_X + 100, BASE_Y + 100, "300 Main St", "Owner Eight"),
    (9, "0400", "0400", "N", BASE_X + 50000, BASE_Y + 50000, "Far Away Blvd", "Owner Nine"),
]

EXPECTED_CONDO_FLAGS = {1: False, 2: True, 3: True, 4: False, 5: False, 6: False, 7: False, 8: False, 9: False}


@asynccontextmanager
async def pipeline_database():
    """Initialized DatabaseManager bound to a fresh schema"""
    dsn, _ = normalize_database_url(os.environ["DATABASE_URL"])
    schema_name = f"propertydata_it_{uuid.uuid4().hex[:8]}"
    connector = PostgresConnector(dsn=dsn, schema_name=schema_name)
    db_manager = DatabaseManager(connector)
    await db_manager.initialize()
    try:
        await create_all_tables(db_manager)
        yield db_manager
    finally:
        await db_manager.close()
        async with connector.dedicated_connection() as conn:
            await conn.execute(f'DROP SCHEMA IF EXISTS "{schema_name}" CASCADE')


async def import_rows(db_manager, rows):
    """Stage rows, merge them and derive geometry, as an import would after COPY"""
    schema_name = db_manager.connector.schema_name
    async with db_manager.connector.dedicated_connection() as conn:
        await conn.execute(f"TRUNCATE TABLE {qualified_name(STAGING_TABLE, schema_name)}")
        await conn.copy_records_to_table(
            STAGING_TABLE,
            records=rows,
            columns=STAGED_COLUMNS,
            schema_name=schema_name,
        )
        merged = await UpsertMerger(schema_name).merge(conn)
        geometry = await GeometryDeriver(SOURCE_SRID, schema_name=schema_name).derive(conn)
    return merged, geometry


async def fetch_points(db_manager):
    schema_name = db_manager.connector.schema_name
    async with db_manager.connector.dedicated_connection() as conn:
        rows = await conn.fetch(f"""
            SELECT
                objectid,
                condo_flag,
                is_parent_folio,
                search_all,
                ST_AsText(geom_raw) AS geom_raw,
                ST_AsText(geom) AS geom,
                ST_X(geom) AS lng,
                ST_Y(geom) AS lat,
                created_at
            FROM {qualified_name(CANONICAL_TABLE, schema_name)}
            ORDER BY objectid
        """)
    return {row["objectid"]: dict(row) for row in rows}


class TestImportPipeline:

    @pytest.mark.asyncio
    async def test_init_db_creates_tables(self):
        async with pipeline_database() as db_manager:
            tables = await create_all_tables(db_manager)

        assert {"property_point_view", "property_point_view_staging", "property_meta", "settings"} <= set(tables)

    @pytest.mark.asyncio
    async def test_condo_flag_normalized_to_boolean(self):
        async with pipeline_database() as db_manager:
            merged, _ = await import_rows(db_manager, STAGED_ROWS)
            points = await fetch_points(db_manager)

        assert merged == len(STAGED_ROWS)
        assert {objectid: row["condo_flag"] for objectid, row in points.items()} == EXPECTED_CONDO_FLAGS

    @pytest.mark.asyncio
    async def test_search_all_is_lowercase_and_unaccented(self):
        async with pipeline_database() as db_manager:
            await import_rows(db_manager, STAGED_ROWS)
            points = await fetch_points(db_manager)

        assert "ana perez" in points[1]["search_all"]
        assert "100 main st" in points[1]["search_all"]
        assert points[1]["search_all"] == points[1]["search_all"].lower()

    @pytest.mark.asyncio
    async def test_reimport_is_idempotent(self):
        async with pipeline_database() as db_manager:
            await import_rows(db_manager, STAGED_ROWS)
            first = await fetch_points(db_manager)

            merged, geometry = await import_rows(db_manager, STAGED_ROWS)
            second = await fetch_points(db_manager)

        assert merged == len(STAGED_ROWS)
        assert second == first
        assert (geometry.cleared, geometry.raw_updated, geometry.projected_updated) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_duplicate_objectid_last_row_wins(self):
        rows = STAGED_ROWS + [(8, "0300", "", "Y", BASE_X + 100, BASE_Y + 100, "300 Main St", "Owner Eight")]
        async with pipeline_database() as db_manager:
            await import_rows(db_manager, rows)
            points = await fetch_points(db_manager)

        assert len(points) == len(STAGED_ROWS)
        assert points[8]["condo_flag"] is True

    @pytest.mark.asyncio
    async def test_missing_coordinates_leave_geometry_null(self):
        async with pipeline_database() as db_manager:
            await import_rows(db_manager, STAGED_ROWS)
            points = await fetch_points(db_manager)

            assert points[7]["geom_raw"] is None
            assert points[7]["geom"] is None
            assert points[1]["geom"] is not None

            rows = [(1, "0100", None, "N", None, BASE_Y, "100 Main St", "Ana Pérez")] + STAGED_ROWS[1:]
            _, geometry = await import_rows(db_manager, rows)
            reloaded = await fetch_points(db_manager)

        assert geometry.cleared == 1
        assert reloaded[1]["geom_raw"] is None
        assert reloaded[1]["geom"] is None

    @pytest.mark.asyncio
    async def test_geometry_is_projected_to_wgs84(self):
        async with pipeline_database() as db_manager:
            await import_rows(db_manager, STAGED_ROWS)
            points = await fetch_points(db_manager)

        assert -80.6 < points[1]["lng"] < -79.9
        assert 25.4 < points[1]["lat"] < 26.1


class TestMaintenance:

    @pytest.mark.asyncio
    async def test_run_all_flags_parents_and_counts_children(self):
        async with pipeline_database() as db_manager:
            schema_name = db_manager.connector.schema_name
            await import_rows(db_manager, STAGED_ROWS)
            service = DataMaintenanceService(db_manager.connector, schema_name=schema_name)

            result = await run_maintenance_task(service, MaintenanceTask.RUN_ALL)
            points = await fetch_points(db_manager)

            async with db_manager.connector.dedicated_connection() as conn:
                meta = await conn.fetch(f"""
                    SELECT object_id, folio, children_count
                    FROM {qualified_name("property_meta", schema_name)}
                    ORDER BY object_id
                """)
                direct_counts = await conn.fetch(f"""
                    SELECT p.objectid, COUNT(c.objectid) AS children
                    FROM {qualified_name(CANONICAL_TABLE, schema_name)} p
                    JOIN {qualified_name(CANONICAL_TABLE, schema_name)} c
                      ON c.parent_folio = p.folio AND c.objectid <> p.objectid
                    GROUP BY p.objectid
                """)

        assert result.success is True
        assert [task["name"] for task in result.data["tasks"]] == ["update-parent-folios", "update-meta"]
        assert {objectid for objectid, row in points.items() if row["is_parent_folio"]} == {1, 9}
        assert {row["object_id"]: row["children_count"] for row in meta} == {
            row["objectid"]: row["children"] for row in direct_counts
        }
        assert [(row["object_id"], row["folio"], row["children_count"]) for row in meta] == [(1, "0100", 5)]

    @pytest.mark.asyncio
    async def test_rerunning_maintenance_keeps_counts(self):
        async with pipeline_database() as db_manager:
            schema_name = db_manager.connector.schema_name
            await import_rows(db_manager, STAGED_ROWS)
            service = DataMaintenanceService(db_manager.connector, schema_name=schema_name)

            await run_maintenance_task(service, MaintenanceTask.UPDATE_PARENT_FOLIOS)
            await run_maintenance_task(service, MaintenanceTask.UPDATE_META)
            second_flags = await service.update_parent_folio_flags()
            second_meta = await service.update_meta()

        assert second_flags.total_updated == 0
        assert second_flags.parents_found == 2
        assert second_meta.total_upserted == 1

    @pytest.mark.asyncio
    async def test_reconcile_clears_parents_that_lost_children(self):
        async with pipeline_database() as db_manager:
            schema_name = db_manager.connector.schema_name
            await import_rows(db_manager, STAGED_ROWS)
            service = DataMaintenanceService(db_manager.connector, schema_name=schema_name)
            await run_maintenance_task(service, MaintenanceTask.RUN_ALL)

            orphaned = [row[:2] + ("",) + row[3:] if row[2] == "0100" else row for row in STAGED_ROWS]
            await import_rows(db_manager, orphaned)

            kept = await service.update_parent_folio_flags()
            cleared = await service.update_parent_folio_flags(reconcile=True)
            meta = await service.update_meta(reconcile=True)

        assert kept.parents_found == 2
        assert cleared.total_cleared == 1
        assert cleared.parents_found == 1
        assert meta.total_deleted == 1


class TestMapQueries:

    @pytest.mark.asyncio
    async def test_bounds_query_excludes_condo_units(self):
        async with pipeline_database() as db_manager:
            schema_name = db_manager.connector.schema_name
            await import_rows(db_manager, STAGED_ROWS)
            root = (await fetch_points(db_manager))[1]
            bbox = BoundingBox(
                min_lng=root["lng"] - 0.002,
                min_lat=root["lat"] - 0.002,
                max_lng=root["lng"] + 0.002,
                max_lat=root["lat"] + 0.002,
            )

            async with db_manager.get_session() as session:
                service = MapService(session, schema_name=schema_name)
                markers = await service.get_properties_in_bounds(MapPropertyFilters(bbox=bbox))
                page = await service.get_properties_in_bounds(MapPropertyFilters(bbox=bbox, limit=2, offset=2))

        # 2 and 3 are condo units, 7 has no geometry and 9 is outside the box
        assert [marker.object_id for marker in markers] == [1, 4, 5, 6, 8]
        assert [marker.object_id for marker in page] == [5, 6]
        assert markers[0].lng == pytest.approx(root["lng"])
        assert markers[0].lat == pytest.approx(root["lat"])

    @pytest.mark.asyncio
    async def test_zoom_gate(self):
        async with pipeline_database() as db_manager:
            schema_name = db_manager.connector.schema_name
            await import_rows(db_manager, STAGED_ROWS)
            bbox = BoundingBox(min_lng=-81.0, min_lat=25.0, max_lng=-79.0, max_lat=27.0)

            async with db_manager.get_session() as session:
                service = MapService(session, min_zoom_level=16, schema_name=schema_name)
                with pytest.raises(ZoomTooLowError):
                    await service.get_properties_in_bounds(MapPropertyFilters(bbox=bbox, zoom=10))
                markers = await service.get_properties_in_bounds(MapPropertyFilters(bbox=bbox, zoom=17))

        assert [marker.object_id for marker in markers] == [1, 4, 5, 6, 8, 9]

    @pytest.mark.asyncio
    async def test_property_details(self):
        async with pipeline_database() as db_manager:
            schema_name = db_manager.connector.schema_name
            await import_rows(db_manager, STAGED_ROWS)

            async with db_manager.get_session() as session:
                service = MapService(session, schema_name=schema_name)
                details = await service.get_property_details(1)
                missing = await service.get_property_details(999999999)

        assert details.object_id == 1
        assert details.address == "100 Main St"
        assert details.owner == "Ana Pérez"
        assert missing is None
