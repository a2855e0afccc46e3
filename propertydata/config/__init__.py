"""Configuration management for propertydata."""
from .settings import Settings, get_settings, reset_settings, DEFAULT_IMPORT_URL
from .database import (
    DatabaseConfig,
    MissingDatabaseSettingError,
    build_database_config,
    build_database_url,
    build_ssl_argument,
    normalize_database_url,
)

__all__ = [
    'Settings',
    'get_settings',
    'reset_settings',
    'DEFAULT_IMPORT_URL',
    'DatabaseConfig',
    'MissingDatabaseSettingError',
    'build_database_config',
    'build_database_url',
    'build_ssl_argument',
    'normalize_database_url',
]
