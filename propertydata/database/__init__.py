# Database package for propertydata

from .connection import DatabaseManager, PostgresConnector, parse_row_count
from .models import (
    Base,
    SCHEMA,
    TARGET_SRID,
    PROPERTY_POINT_VIEW_COLUMNS,
    PropertyPointViewStaging,
    PropertyPointView,
    PropertyMeta,
    Settings,
    qualified_name,
)

__all__ = [
    'DatabaseManager',
    'PostgresConnector',
    'parse_row_count',
    'Base',
    'SCHEMA',
    'TARGET_SRID',
    'PROPERTY_POINT_VIEW_COLUMNS',
    # Tables
    'PropertyPointViewStaging',
    'PropertyPointView',
    'PropertyMeta',
    'Settings',
    'qualified_name',
]
