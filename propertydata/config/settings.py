"""
Application settings and configuration.

Loads environment variables for the database connection, the property import
source, the map query limits and logging.
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_IMPORT_URL = "https://example.com/neurastate/property_point_view.csv"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields in .env
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")

    # Database (discrete variables, see config.database)
    DB_INSTANCE_HOST: Optional[str] = Field(default=None, description="PostgreSQL host")
    DB_USER: Optional[str] = Field(default=None, description="PostgreSQL user")
    DB_PASS: Optional[str] = Field(default=None, description="PostgreSQL password")
    DB_NAME: Optional[str] = Field(default=None, description="PostgreSQL database name")
    DB_PORT: int = Field(default=5432, ge=1, le=65535)
    DB_SCHEMA: str = Field(default="neurastate", description="Schema holding the property tables")
    DB_SSL: bool = Field(default=True, description="Set to false to disable TLS")
    DB_SSLMODE: str = Field(default="require", description="libpq sslmode rendered into the connection string")
    NODE_TLS_REJECT_UNAUTHORIZED: bool = Field(
        default=True,
        description="Set to 0 to skip server certificate validation"
    )

    # Direct connection string, alternative to the discrete variables
    DATABASE_URL: Optional[str] = Field(default=None)

    # Property import
    PROPERTY_IMPORT_URL: str = Field(
        default=DEFAULT_IMPORT_URL,
        description="Fallback CSV source when no settings record provides one"
    )
    CSV_CHUNK_SIZE_BYTES: int = Field(default=64 * 1024, ge=1024)
    SOURCE_SRID: int = Field(
        default=2236,
        description="SRID of x_coord/y_coord (NAD83 / Florida East, US feet)"
    )

    # Map queries
    MAP_MIN_ZOOM_LEVEL: int = Field(default=13, ge=0, le=24)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_JSON: bool = Field(default=True)

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v_upper

    @field_validator("DB_SSL", "NODE_TLS_REJECT_UNAUTHORIZED", mode="before")
    @classmethod
    def parse_enabled_flag(cls, v: object, info: ValidationInfo) -> bool:
        """Only the explicit off value disables; anything else (including empty) keeps the flag on."""
        if isinstance(v, bool):
            return v
        off_value = "false" if info.field_name == "DB_SSL" else "0"
        return str(v if v is not None else "").strip().lower() != off_value

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.ENVIRONMENT.lower() == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings, read once per process."""
    return Settings()


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
