"""Import, maintenance and map query services for propertydata."""
from .bulk_loader import CsvDownloadError, PropertyPointViewLoader, StagingLoadResult
from .data_maintenance import (
    DataMaintenanceService,
    MaintenanceResult,
    MaintenanceTask,
    run_maintenance_task,
)
from .geometry import GeometryDeriver, GeometryUpdateResult
from .map_service import (
    BoundingBox,
    MapPropertyDetails,
    MapPropertyFilters,
    MapPropertyMarker,
    MapQueryError,
    MapService,
    ZoomTooLowError,
)
from .property_import import ImportResult, PropertyImportService
from .settings_service import SettingsService
from .upsert_merger import UpsertMerger

__all__ = [
    # Import pipeline
    'CsvDownloadError',
    'PropertyPointViewLoader',
    'StagingLoadResult',
    'UpsertMerger',
    'GeometryDeriver',
    'GeometryUpdateResult',
    'ImportResult',
    'PropertyImportService',
    'SettingsService',
    # Maintenance
    'DataMaintenanceService',
    'MaintenanceResult',
    'MaintenanceTask',
    'run_maintenance_task',
    # Map queries
    'BoundingBox',
    'MapPropertyDetails',
    'MapPropertyFilters',
    'MapPropertyMarker',
    'MapQueryError',
    'MapService',
    'ZoomTooLowError',
]
