"""
Timestamp (de)serialisation for GeoPackage DATETIME columns.

GeoPackage stores timestamps as ISO 8601 text in UTC with a trailing
``Z``, e.g. ``2014-03-27T14:28:12.000Z``.
"""

from datetime import datetime, timezone
from typing import Optional

_FORMATS = ("%Y-%m-%dT%H:%M:%S.%fZ", "%Y-%m-%dT%H:%M:%SZ", "%Y-%m-%d")


def serialize_datetime(dt: Optional[datetime] = None) -> str:
    """Format ``dt`` (default: now) as GeoPackage UTC text with milliseconds."""
    if dt is None:
        dt = datetime.now(timezone.utc)
    elif dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_datetime(text: str) -> datetime:
    """Parse GeoPackage timestamp text into an aware UTC datetime.

    Raises ValueError for anything that is not a GeoPackage timestamp.
    """
    if not isinstance(text, str):
        raise ValueError(f"Expected timestamp text, got {text!r}")
    for fmt in _FORMATS:
        try:
            parsed = datetime.strptime(text.strip(), fmt)
        except ValueError:
            continue
        return parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Invalid GeoPackage timestamp: {text!r}")
