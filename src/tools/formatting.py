"""Render dates and times the way the agent says them aloud."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.logging_config import get_logger

logger: Any = get_logger(__name__)

DEFAULT_TIMEZONE = "America/New_York"


def tenant_zone(name: str | None) -> ZoneInfo:
    """Resolve a tenant's timezone, falling back to the default."""
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, using {DEFAULT_TIMEZONE}")
        return ZoneInfo(DEFAULT_TIMEZONE)


def spoken_clock(hour: int, minute: int) -> str:
    """14, 30 -> '2:30 PM'."""
    suffix = "PM" if hour >= 12 else "AM"
    return f"{hour % 12 or 12}:{minute:02d} {suffix}"


def spoken_hhmm(value: str) -> str:
    """'17:00' -> '5:00 PM'."""
    hours, minutes = value.split(":")[:2]
    return spoken_clock(int(hours), int(minutes))


def spoken_date(value: datetime, *, weekday: bool = False) -> str:
    """'January 1, 2099', or 'Thursday, January 1, 2099' with weekday."""
    text = f"{value:%B} {value.day}, {value.year}"
    return f"{value:%A}, {text}" if weekday else text
