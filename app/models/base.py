import uuid as uuid_pkg
from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to datetimes read back without tzinfo.

    Columns are TIMESTAMP WITH TIME ZONE on PostgreSQL, but SQLite drops the
    offset on round-trip. All stored values are UTC, so naive means UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def new_id() -> str:
    """Opaque 32-character identifier."""
    return uuid_pkg.uuid4().hex
