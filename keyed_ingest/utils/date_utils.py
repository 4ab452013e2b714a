"""
Date and time utilities.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser


def get_current_timestamp() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a value that looks like a date or timestamp.

    Returns None when the value is empty or not date-like. Results are
    timezone-aware UTC; naive values are taken to be UTC already.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = parser.isoparse(text)
        except ValueError:
            try:
                parsed = parser.parse(text)
            except (ValueError, OverflowError):
                return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
