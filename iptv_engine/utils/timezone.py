"""
Date and Time utilities

This module handles all date/time conversions and parsing.
Centralizes all date parsing logic to maintain consistency across the application.
"""
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo
import logging
import re

logger = logging.getLogger(__name__)

_XMLTV_OFFSET = re.compile(r"^([+-])(\d{2}):?(\d{2})$")


class DateFormatError(ValueError):
    """Raised when date format is invalid"""
    pass


def _normalize_iso8601_string(date_str: str) -> str:
    """Normalize ISO8601 string by replacing 'Z' with '+00:00'

    Args:
        date_str: ISO8601 datetime string

    Returns:
        Normalized string with explicit timezone offset
    """
    return date_str.replace('Z', '+00:00') if date_str.endswith('Z') else date_str


def parse_iso8601_to_utc(date_str: str) -> datetime:
    """
    Parse ISO8601 date string and convert to UTC datetime

    Args:
        date_str: ISO8601 datetime string (e.g., '2025-10-09T00:00:00Z' or '2025-10-09T00:00:00+01:00')

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        DateFormatError: If the date string format is invalid
    """
    try:
        normalized = _normalize_iso8601_string(date_str)
        dt = datetime.fromisoformat(normalized)
        return ensure_utc(dt)
    except (ValueError, AttributeError) as e:
        raise DateFormatError(f"Invalid ISO8601 datetime format: '{date_str}'") from e


def ensure_utc(dt: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_xmltv_time(time_str: str | None) -> datetime | None:
    """
    Convert XMLTV time format to a UTC datetime

    The compact timestamp is followed by an optional '±HHMM' offset which is
    applied. A missing or malformed offset is treated as UTC.

    Args:
        time_str: XMLTV time like '20080715003000 -0600'

    Returns:
        Timezone-aware datetime in UTC, or None if absent or unparsable
    """
    if not time_str:
        return None

    parts = time_str.strip().split()
    if not parts:
        return None

    # Some guides emit fewer digits (no seconds); pad to YYYYMMDDHHMMSS
    time_part = parts[0][:14]
    if not time_part.isdigit() or len(time_part) < 12:
        return None
    time_part = time_part.ljust(14, '0')

    try:
        dt = datetime.strptime(time_part, '%Y%m%d%H%M%S')
    except ValueError:
        return None

    offset = timedelta(0)
    if len(parts) > 1:
        match = _XMLTV_OFFSET.match(parts[1])
        if match:
            sign = 1 if match.group(1) == '+' else -1
            offset = sign * timedelta(hours=int(match.group(2)), minutes=int(match.group(3)))
        else:
            logger.debug("Ignoring malformed XMLTV offset '%s'", parts[1])

    # Convert to UTC
    try:
        return (dt - offset).replace(tzinfo=timezone.utc)
    except OverflowError:
        logger.debug("XMLTV time '%s' is out of range after its offset", time_str)
        return None


def convert_to_timezone(dt: datetime, target_tz: str) -> str:
    """
    Convert a datetime to the target timezone

    Args:
        dt: Datetime (naive values are treated as UTC)
        target_tz: Target timezone (IANA format or 'UTC')

    Returns:
        ISO8601 timestamp in target timezone
    """
    dt = ensure_utc(dt)

    if target_tz == "UTC":
        return dt.isoformat()

    return dt.astimezone(ZoneInfo(target_tz)).isoformat()
