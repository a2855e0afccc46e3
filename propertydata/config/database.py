"""
Database connection parameters.

Builds an explicit connection config from a settings snapshot and renders it as
a libpq-style connection string or as driver keyword arguments. Nothing here
performs I/O.
"""
import ssl
from typing import Optional, Tuple, Union
from urllib.parse import parse_qsl, quote_plus, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict

from .settings import Settings


REQUIRED_VARIABLES = ("DB_INSTANCE_HOST", "DB_USER", "DB_PASS", "DB_NAME")


class MissingDatabaseSettingError(Exception):
    """Raised when a required database environment variable is not set."""

    def __init__(self, variable: str):
        self.variable = variable
        super().__init__(f"{variable} is not defined")


class DatabaseConfig(BaseModel):
    """Discrete PostgreSQL connection parameters."""

    model_config = ConfigDict(frozen=True)

    host: str
    user: str
    password: str
    database: str
    port: int = 5432
    schema_name: str = "neurastate"
    ssl_mode: str = "require"
    ssl_enabled: bool = True
    reject_unauthorized: bool = True


def build_database_config(settings: Settings) -> DatabaseConfig:
    """
    Assemble connection parameters from settings.

    Raises:
        MissingDatabaseSettingError: naming the first required variable that is unset
    """
    for variable in REQUIRED_VARIABLES:
        if not getattr(settings, variable):
            raise MissingDatabaseSettingError(variable)

    return DatabaseConfig(
        host=settings.DB_INSTANCE_HOST,
        user=settings.DB_USER,
        password=settings.DB_PASS,
        database=settings.DB_NAME,
        port=settings.DB_PORT,
        schema_name=settings.DB_SCHEMA,
        ssl_mode=settings.DB_SSLMODE,
        ssl_enabled=settings.DB_SSL,
        reject_unauthorized=settings.NODE_TLS_REJECT_UNAUTHORIZED,
    )


def build_database_url(config: DatabaseConfig, driver: str = "postgresql") -> str:
    """Render a connection string; user and password are URL-encoded."""
    query = urlencode({"sslmode": config.ssl_mode}) if config.ssl_mode else ""
    url = (
        f"{driver}://{quote_plus(config.user)}:{quote_plus(config.password)}@"
        f"{config.host}:{config.port}/{config.database}"
    )
    return f"{url}?{query}" if query else url


def build_ssl_argument(config: DatabaseConfig) -> Union[bool, ssl.SSLContext]:
    """TLS argument for asyncpg.connect: False, or a (non-)verifying context."""
    if not config.ssl_enabled:
        return False

    context = ssl.create_default_context()
    if not config.reject_unauthorized:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def normalize_database_url(url: str) -> Tuple[str, Optional[str]]:
    """
    Make a DATABASE_URL usable by asyncpg.

    Drops SQLAlchemy driver suffixes (postgresql+asyncpg) and pulls a Prisma-style
    ``schema`` query parameter out of the string. Returns (dsn, schema or None).
    """
    parts = urlsplit(url)
    scheme = parts.scheme.split("+", 1)[0]
    if scheme == "postgres":
        scheme = "postgresql"

    schema_name = None
    query = []
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key == "schema":
            schema_name = value
        else:
            query.append((key, value))

    dsn = urlunsplit((scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))
    return dsn, schema_name
