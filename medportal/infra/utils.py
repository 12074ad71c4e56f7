"""
Utils - Utility functions for the application.
"""

import uuid
from typing import Any, Optional
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """
    Serialize a datetime to ISO-8601.

    Args:
        value: The datetime (naive values are treated as UTC)

    Returns:
        ISO string or None
    """
    if value is None:
        return None

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)

    return value.isoformat()


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (or pass through a datetime).

    Accepts the trailing "Z" that JavaScript's toISOString() produces.

    Args:
        value: String, datetime or None

    Returns:
        Aware UTC datetime or None
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def format_countdown(seconds: int) -> str:
    """
    Format a number of seconds as m:ss.

    Args:
        seconds: Remaining seconds

    Returns:
        Countdown string, e.g. "4:05"
    """
    seconds = max(0, int(seconds))
    minutes = seconds // 60
    remaining = seconds % 60
    return f"{minutes}:{remaining:02d}"


def is_blank(value: Any) -> bool:
    """Check if a value is None or a whitespace-only string."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def parse_positive_int(value: Any) -> Optional[int]:
    """
    Parse a strictly positive integer from an int or digit string.

    Args:
        value: The raw value

    Returns:
        The integer, or None if the value is not a positive integer
    """
    if isinstance(value, bool):
        return None

    if isinstance(value, int):
        return value if value > 0 else None

    if isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None

    return None


def generate_id(prefix: str = "") -> str:
    """
    Generate a unique ID.

    Args:
        prefix: Optional prefix

    Returns:
        Unique ID string
    """
    uid = str(uuid.uuid4())

    if prefix:
        return f"{prefix}_{uid}"

    return uid
