"""
Time helpers for flag and phase timestamps.

Everything the engine stores is timezone-aware UTC. On the wire and in
the database payload, timestamps are ISO 8601 strings ending in "Z".
"""

from datetime import datetime, timezone
from typing import Optional

UTC = timezone.utc


def utc_now() -> datetime:
    """Default clock for the registry, tracker and gradual scheduler."""
    return datetime.now(UTC)


def to_utc(dt: datetime) -> datetime:
    # Naive values come from older payloads and are already UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_iso8601(dt: Optional[datetime]) -> Optional[str]:
    """
    Render a timestamp for the wire, e.g. "2024-01-15T14:30:00.123456Z".

    ``None`` passes through so optional fields such as ``killSwitchAt``
    serialize as null.
    """
    if dt is None:
        return None
    return to_utc(dt).isoformat().replace("+00:00", "Z")


def from_iso8601(value: Optional[str]) -> Optional[datetime]:
    """Parse a wire timestamp; accepts a "Z" suffix or an explicit offset."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(value))
