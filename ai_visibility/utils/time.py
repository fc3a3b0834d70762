"""
UTC timestamp utilities.

All timestamps written to SQLite are UTC strings with a 'Z' suffix so that
plain string comparison orders them chronologically. Engine-local calendar
days (used by the daily budget guard) are converted back to UTC here.

This module provides:
- utc_now(): Current time as timezone-aware datetime
- utc_timestamp(): ISO 8601 timestamp string with 'Z' suffix
- format_timestamp(): Format an aware datetime the same way
- parse_timestamp(): Parse ISO 8601 string to datetime
- start_of_local_day(): UTC timestamp of midnight in an engine's timezone

Examples:
    >>> from ai_visibility.utils.time import utc_timestamp, start_of_local_day
    >>> utc_timestamp()
    '2025-11-02T08:30:45Z'
    >>> start_of_local_day("America/New_York", parse_timestamp("2025-11-02T08:30:45Z"))
    '2025-11-02T04:00:00Z'
"""

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    """
    Return current time in UTC with timezone info.

    Note:
        NEVER use datetime.now() without a timezone or datetime.utcnow().
    """
    return datetime.now(UTC)


def format_timestamp(dt: datetime) -> str:
    """
    Format a timezone-aware datetime as a UTC 'Z' timestamp.

    Args:
        dt: Aware datetime in any timezone

    Returns:
        str: Timestamp like '2025-11-02T08:30:45Z'

    Raises:
        ValueError: If dt is naive
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Datetime must be timezone-aware (use timezone.utc). "
            "Got naive datetime."
        )
    return dt.astimezone(UTC).strftime(TIMESTAMP_FORMAT)


def utc_timestamp() -> str:
    """
    Return the current time as an ISO 8601 string with 'Z' suffix.

    Used for database storage and structured logs.
    """
    return format_timestamp(utc_now())


def parse_timestamp(timestamp_str: str) -> datetime:
    """
    Parse ISO 8601 timestamp string to timezone-aware datetime.

    Args:
        timestamp_str: ISO 8601 timestamp string ending with 'Z'

    Returns:
        datetime: Timezone-aware datetime in UTC

    Raises:
        ValueError: If timestamp doesn't end with 'Z' or has invalid format
    """
    if not timestamp_str.endswith("Z"):
        raise ValueError(f"Timestamp must end with 'Z' (UTC): {timestamp_str}")

    try:
        return datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid ISO 8601 timestamp format: {timestamp_str}") from e


def start_of_local_day(timezone_name: str, now: datetime | None = None) -> str:
    """
    Return the UTC timestamp of the most recent midnight in a timezone.

    The budget guard sums costs of runs started at or after this instant,
    so an engine configured for "Europe/Berlin" resets its budget at Berlin
    midnight rather than UTC midnight.

    Args:
        timezone_name: IANA timezone name (e.g. "UTC", "America/New_York")
        now: Reference instant (defaults to utc_now()); must be aware

    Returns:
        str: UTC timestamp with 'Z' suffix

    Raises:
        ValueError: If the timezone name is unknown or now is naive

    Example:
        >>> start_of_local_day("UTC", parse_timestamp("2025-11-02T08:30:45Z"))
        '2025-11-02T00:00:00Z'
    """
    if now is None:
        now = utc_now()
    if now.tzinfo is None:
        raise ValueError("Reference datetime must be timezone-aware")

    try:
        zone = ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {timezone_name}") from e

    local_now = now.astimezone(zone)
    local_midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return format_timestamp(local_midnight)


def seconds_from_now(seconds: float, now: datetime | None = None) -> str:
    """Return the UTC timestamp `seconds` after now (used for queue backoff)."""
    base = now if now is not None else utc_now()
    return format_timestamp(base + timedelta(seconds=seconds))
