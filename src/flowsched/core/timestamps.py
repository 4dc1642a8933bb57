"""
UTC timestamp utilities and short run identifiers (stdlib-only).

Every row the scheduler writes carries UTC timestamps stored as ISO 8601
text.  The due-schedule query compares those strings directly, so the
serialized form must be fixed-width: always UTC, always microsecond
precision.  ``to_iso8601`` guarantees that; ``from_iso8601`` reads it
back (treating naive values as UTC).

Tags:
    timestamps, utc, iso8601, run-id, stdlib-only
"""

import secrets
from datetime import UTC, datetime

# Base-36 alphabet for run IDs
_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime (naive values are assumed UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to a sortable ISO 8601 UTC string."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="microseconds")


def from_iso8601(s: str | datetime | None) -> datetime | None:
    """Parse ISO 8601 string to an aware UTC datetime.

    Drivers that already return ``datetime`` objects (PostgreSQL
    ``timestamptz`` columns) are passed through ``ensure_utc``.
    """
    if s is None or s == "":
        return None
    if isinstance(s, datetime):
        return ensure_utc(s)
    return ensure_utc(datetime.fromisoformat(s))


def generate_run_id() -> str:
    """Generate a short schedule-run identifier, e.g. ``run-k3x9q0a1zz``.

    Fits the 15-character id column used by the run history table.
    """
    return "run-" + "".join(secrets.choice(_ALPHABET) for _ in range(10))
