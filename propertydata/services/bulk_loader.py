"""
Property Point View Bulk Loader

Streams the upstream property CSV straight into the staging table through
PostgreSQL COPY FROM STDIN.

Workflow:
1. Open the CSV over HTTP (status must be 2xx, body must not be empty)
2. TRUNCATE the staging table (every import is a full replace)
3. Pipe the response body into COPY ... WITH (FORMAT csv, HEADER true)

asyncpg pulls chunks from the response iterator as fast as the server accepts
them, so a slow COPY slows the download rather than buffering it in memory.
"""
import csv
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, AsyncIterator, Callable, List, Optional, Sequence

import aiohttp
import asyncpg
import structlog

from ..database.connection import parse_row_count
from ..database.models import PROPERTY_POINT_VIEW_COLUMNS, SCHEMA, qualified_name

logger = structlog.get_logger(__name__)

STAGING_TABLE = 'property_point_view_staging'

# Headers longer than this are not inspected
MAX_HEADER_BYTES = 64 * 1024


class CsvDownloadError(Exception):
    """Raised when the CSV source cannot be fetched."""

    def __init__(self, url: str, status: Optional[int] = None, reason: str = ""):
        self.url = url
        self.status = status
        message = f"Failed to download CSV from {url}"
        if status is not None:
            message += f". Status: {status}"
        if reason:
            message += f". {reason}"
        super().__init__(message)


@dataclass
class StagingLoadResult:
    """Outcome of one COPY into the staging table"""
    rows_copied: int
    bytes_streamed: int
    header_matches: Optional[bool]


class CsvByteStream:
    """
    Async byte source for COPY built on top of an HTTP body iterator.

    Passes chunks through unchanged, counts the bytes, and compares the first
    line against the expected column list.
    """

    def __init__(self, chunks: AsyncIterator[bytes], expected_columns: Sequence[str]):
        self._chunks = chunks
        self.expected_columns = list(expected_columns)
        self.bytes_streamed = 0
        self.header: Optional[List[str]] = None
        self._header_buffer = b""
        self._header_checked = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        async for chunk in self._chunks:
            if not chunk:
                continue
            self.bytes_streamed += len(chunk)
            if not self._header_checked:
                self._feed_header(chunk)
            yield chunk

        if not self._header_checked and self._header_buffer:
            # Single-line body without a trailing newline
            self._check_header(self._header_buffer)

    @property
    def header_matches(self) -> Optional[bool]:
        if self.header is None:
            return None
        return self.header == self.expected_columns

    def _feed_header(self, chunk: bytes) -> None:
        self._header_buffer += chunk
        line, newline, _ = self._header_buffer.partition(b"\n")
        if newline:
            self._check_header(line)
        elif len(self._header_buffer) > MAX_HEADER_BYTES:
            logger.warning("csv_header_too_long", bytes=len(self._header_buffer))
            self._header_checked = True
            self._header_buffer = b""

    def _check_header(self, line: bytes) -> None:
        self._header_checked = True
        self._header_buffer = b""

        text = line.decode("utf-8-sig", errors="replace").strip("\r\n")
        row = next(csv.reader([text]), [])
        self.header = [column.strip().lower() for column in row]

        if self.header != self.expected_columns:
            missing = [c for c in self.expected_columns if c not in self.header]
            unexpected = [c for c in self.header if c not in self.expected_columns]
            logger.warning(
                "csv_header_mismatch",
                expected_count=len(self.expected_columns),
                received_count=len(self.header),
                missing=missing,
                unexpected=unexpected,
            )


def _default_client_session() -> aiohttp.ClientSession:
    # No overall deadline: the download lasts as long as the COPY takes
    return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))


class PropertyPointViewLoader:
    """Downloads the property CSV and bulk-copies it into staging"""

    def __init__(
        self,
        schema_name: str = SCHEMA,
        chunk_size_bytes: int = 64 * 1024,
        session_factory: Callable[[], aiohttp.ClientSession] = _default_client_session,
    ):
        self.schema_name = schema_name
        self.chunk_size_bytes = chunk_size_bytes
        self.session_factory = session_factory

    @property
    def staging_table(self) -> str:
        return qualified_name(STAGING_TABLE, self.schema_name)

    @asynccontextmanager
    async def open_csv(self, url: str) -> AsyncGenerator[aiohttp.ClientResponse, None]:
        """
        Open the CSV response for streaming.

        Raises:
            CsvDownloadError: non-2xx status or an empty body
        """
        logger.info("csv_download_started", url=url)
        async with self.session_factory() as http:
            async with http.get(url) as response:
                if not 200 <= response.status < 300:
                    raise CsvDownloadError(url, status=response.status)
                if response.content_length == 0:
                    raise CsvDownloadError(url, status=response.status, reason="Response has no body")

                logger.info(
                    "csv_download_opened",
                    url=url,
                    content_length=response.content_length,
                )
                yield response

    async def stage(
        self,
        conn: asyncpg.Connection,
        response: aiohttp.ClientResponse,
    ) -> StagingLoadResult:
        """Replace the staging table contents with the streamed CSV body."""
        await conn.execute(f"TRUNCATE TABLE {self.staging_table}")
        logger.info("staging_truncated", table=STAGING_TABLE)

        stream = CsvByteStream(
            response.content.iter_chunked(self.chunk_size_bytes),
            PROPERTY_POINT_VIEW_COLUMNS,
        )

        logger.info("bulk_copy_started", table=STAGING_TABLE, columns=len(PROPERTY_POINT_VIEW_COLUMNS))
        try:
            status = await conn.copy_to_table(
                STAGING_TABLE,
                source=stream,
                columns=list(PROPERTY_POINT_VIEW_COLUMNS),
                schema_name=self.schema_name,
                format='csv',
                header=True,
            )
        except Exception as e:
            logger.error(
                "bulk_copy_failed",
                table=STAGING_TABLE,
                bytes_streamed=stream.bytes_streamed,
                error=str(e),
            )
            raise

        rows_copied = parse_row_count(status)
        logger.info(
            "bulk_copy_completed",
            table=STAGING_TABLE,
            rows=rows_copied,
            bytes_streamed=stream.bytes_streamed,
        )

        return StagingLoadResult(
            rows_copied=rows_copied,
            bytes_streamed=stream.bytes_streamed,
            header_matches=stream.header_matches,
        )
