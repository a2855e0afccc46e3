#!/usr/bin/env python3
"""
CLI for the property data jobs

Usage:
    python -m propertydata.cli.data_cli import-property-point-view
    python -m propertydata.cli.data_cli import-property-point-view --url https://host/file.csv
    python -m propertydata.cli.data_cli data-maintenance:run-all
    python -m propertydata.cli.data_cli data-maintenance:update-parent-folios --reconcile
    python -m propertydata.cli.data_cli init-db
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, Optional

import aiohttp
import asyncpg
from pydantic import ValidationError

from ..config import MissingDatabaseSettingError, Settings, get_settings
from ..database import DatabaseManager, PostgresConnector
from ..database.init_database import create_all_tables
from ..services.bulk_loader import CsvDownloadError
from ..services.data_maintenance import (
    DataMaintenanceService,
    MaintenanceTask,
    run_maintenance_task,
)
from ..services.property_import import PropertyImportService
from ..utils.logging import configure_logging, get_logger


logger = get_logger(__name__)

IMPORT_ACTION = 'import-property-point-view'
INIT_DB_ACTION = 'init-db'

MAINTENANCE_ACTIONS = {
    'data-maintenance': MaintenanceTask.RUN_ALL,
    'data-maintenance:run-all': MaintenanceTask.RUN_ALL,
    'data-maintenance:update-parent-folios': MaintenanceTask.UPDATE_PARENT_FOLIOS,
    'data-maintenance:update-meta': MaintenanceTask.UPDATE_META,
}

ACTIONS = [IMPORT_ACTION, *MAINTENANCE_ACTIONS, INIT_DB_ACTION]


def print_json(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


class DataCLI:
    """Runs one operator action and returns the process exit code"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.connector = PostgresConnector.from_settings(settings)

    async def import_property_point_view(self, url: Optional[str] = None) -> int:
        """Download, stage, merge and derive geometry; prints the summary"""
        db_manager = DatabaseManager(self.connector)
        await db_manager.initialize()
        try:
            service = PropertyImportService.from_settings(self.settings, self.connector, db_manager)
            result = await service.import_property_point_view(url)
        except (CsvDownloadError, aiohttp.ClientError, asyncpg.PostgresError, OSError) as e:
            logger.error("property_import_failed", error=str(e))
            print_json({
                "success": False,
                "message": "Failed to import property_point_view",
                "error": str(e),
            })
            return 1
        finally:
            await db_manager.close()

        print_json({
            "success": True,
            "message": f"Import completed. Total rows in property_point_view: {result.total_rows}",
            "data": result.to_dict(),
        })
        return 0

    async def data_maintenance(self, task: MaintenanceTask, reconcile: bool = False) -> int:
        """Run a maintenance task; a failed result exits non-zero"""
        service = DataMaintenanceService(self.connector, schema_name=self.connector.schema_name)
        result = await run_maintenance_task(service, task, reconcile=reconcile)
        print_json(result.to_dict())
        return 0 if result.success else 1

    async def init_db(self) -> int:
        """Create extensions, schema and tables"""
        db_manager = DatabaseManager(self.connector)
        await db_manager.initialize()
        try:
            tables = await create_all_tables(db_manager)
        finally:
            await db_manager.close()

        print_json({"success": True, "message": "Database initialized", "data": {"tables": tables}})
        return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser"""
    parser = argparse.ArgumentParser(
        prog="propertydata",
        description="Property data import and maintenance CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Actions:
  import-property-point-view              Import the property CSV (--url overrides the source)
  data-maintenance                        Same as data-maintenance:run-all
  data-maintenance:run-all                Update parent folio flags, then property_meta
  data-maintenance:update-parent-folios   Update parent folio flags only
  data-maintenance:update-meta            Update property_meta only
  init-db                                 Create extensions, schema and tables
        """
    )

    parser.add_argument(
        'action',
        nargs='?',
        help='Action to execute'
    )

    parser.add_argument(
        '--url',
        help='CSV source URL (for import-property-point-view)'
    )

    parser.add_argument(
        '--reconcile',
        action='store_true',
        help='Also clear stale parent flags and property_meta rows (for data-maintenance actions)'
    )

    return parser


async def main(argv=None) -> int:
    """Main CLI entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.action not in ACTIONS:
        if args.action:
            print(f"Unknown action: {args.action}", file=sys.stderr)
        parser.print_help(sys.stderr)
        return 1

    try:
        settings = get_settings()
    except ValidationError as e:
        print_json({"success": False, "message": "Invalid configuration", "error": str(e)})
        return 1

    configure_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)

    try:
        cli = DataCLI(settings)
    except MissingDatabaseSettingError as e:
        logger.error("database_configuration_invalid", variable=e.variable)
        print_json({"success": False, "message": "Invalid database configuration", "error": str(e)})
        return 1

    try:
        if args.action == IMPORT_ACTION:
            return await cli.import_property_point_view(args.url)

        elif args.action in MAINTENANCE_ACTIONS:
            return await cli.data_maintenance(MAINTENANCE_ACTIONS[args.action], reconcile=args.reconcile)

        elif args.action == INIT_DB_ACTION:
            return await cli.init_db()

    except KeyboardInterrupt:
        print("Operation cancelled by user", file=sys.stderr)
        return 1
    except Exception as e:
        logger.error("cli_failed", action=args.action, error=str(e))
        print_json({"success": False, "message": f"{args.action} failed", "error": str(e)})
        return 1

    return 1


def run() -> None:
    """Console script entry point"""
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    run()
