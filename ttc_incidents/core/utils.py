"""Core utility functions."""

from datetime import UTC, datetime
from urllib.parse import urlparse, urlunparse


def convert_async_db_url_to_sync(database_url: str) -> str:
    """
    Convert an async database URL to its synchronous driver equivalent.

    Alembic runs migrations synchronously, so postgresql+asyncpg:// becomes
    postgresql+psycopg:// and sqlite+aiosqlite:// becomes sqlite://.

    Example:
        >>> convert_async_db_url_to_sync("postgresql+asyncpg://u:p@db/ttc")
        'postgresql+psycopg://u:p@db/ttc'
    """
    parsed_url = urlparse(database_url)
    if "+asyncpg" in parsed_url.scheme:
        return urlunparse(parsed_url._replace(scheme=parsed_url.scheme.replace("+asyncpg", "+psycopg")))
    if "+aiosqlite" in parsed_url.scheme:
        # sqlite URLs have no netloc; urlunparse would drop the leading slashes
        return database_url.replace("+aiosqlite", "", 1)
    return database_url


def as_utc(value: datetime) -> datetime:
    """
    Treat naive datetimes as UTC.

    SQLite hands timezone-aware columns back without tzinfo.

    Example:
        >>> as_utc(datetime(2025, 1, 1, 12, 0)).isoformat()
        '2025-01-01T12:00:00+00:00'
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
