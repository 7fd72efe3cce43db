"""
Time and duration formatting for dashboard rows.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional

MINUTE = 60
HOUR = 3600
DAY = 86400
MONTH = 30 * DAY


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp found inside a content document.

    Accepts datetimes, ISO-8601 strings (a trailing ``Z`` included) and
    epoch numbers (milliseconds when large enough, else seconds).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return as_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def time_ago(timestamp: datetime, now: Optional[datetime] = None) -> str:
    """
    Render how long ago something happened.

    ``N minutes ago`` under an hour, ``N hours ago`` under a day,
    ``N days ago`` under thirty days, else ``YYYY-MM-DD HH:MM``.
    """
    timestamp = as_utc(timestamp)
    now = as_utc(now) if now else datetime.now(timezone.utc)
    elapsed = max((now - timestamp).total_seconds(), 0)

    if elapsed < HOUR:
        return f"{int(elapsed // MINUTE)} minutes ago"
    if elapsed < DAY:
        return f"{int(elapsed // HOUR)} hours ago"
    if elapsed < MONTH:
        return f"{int(elapsed // DAY)} days ago"
    return timestamp.strftime("%Y-%m-%d %H:%M")


def _clock(value: datetime) -> str:
    hour = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {meridiem}"


def format_started_time(start: Any, now: Optional[datetime] = None) -> Optional[str]:
    """
    Render a build start as ``Today, 3:05 PM`` or ``Monday, 3:05 PM``.

    Returns None when the start time is missing or unparseable.
    """
    started = parse_timestamp(start)
    if started is None:
        return None
    now = as_utc(now) if now else datetime.now(timezone.utc)

    if started.date() == now.date():
        return f"Today, {_clock(started)}"
    return f"{started.strftime('%A')}, {_clock(started)}"


def format_duration(seconds: Any) -> Optional[str]:
    """Render a duration in seconds as ``<minutes>m <seconds>s``."""
    if seconds is None or isinstance(seconds, bool):
        return None
    try:
        value = float(seconds)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value) or value < 0:
        return None

    minutes = math.floor(value / 60)
    remainder = value % 60
    if remainder.is_integer():
        remainder = int(remainder)
    return f"{minutes}m {remainder}s"
