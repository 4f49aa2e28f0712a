"""Scheduled-time parsing and the queue visibility gate.

Scheduled times are stored as local wall-clock strings `YYYY-MM-DD HH:MM AM|PM`.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Optional

_SCHEDULED_RE = re.compile(
    r"^\s*(\d{4})-(\d{2})-(\d{2})\s+(\d{1,2}):(\d{2})\s*([AaPp][Mm])\s*$"
)


def to_24_hour(hour: int, meridiem: str) -> int:
    """12-hour clock to 24-hour clock (12 AM -> 0, 12 PM -> 12)."""
    if not 1 <= hour <= 12:
        raise ValueError(f"hour out of range for 12-hour clock: {hour}")
    meridiem = meridiem.upper()
    if meridiem == "AM":
        return 0 if hour == 12 else hour
    if meridiem == "PM":
        return 12 if hour == 12 else hour + 12
    raise ValueError(f"invalid meridiem: {meridiem}")


def parse_scheduled_time(value: str) -> datetime:
    match = _SCHEDULED_RE.match(value or "")
    if not match:
        raise ValueError(f"invalid scheduled time: {value!r}")
    year, month, day, hour, minute, meridiem = match.groups()
    minute_value = int(minute)
    if minute_value > 59:
        raise ValueError(f"invalid minute in scheduled time: {value!r}")
    return datetime(int(year), int(month), int(day), to_24_hour(int(hour), meridiem), minute_value)


def try_parse_scheduled_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_scheduled_time(value)
    except ValueError:
        return None


def format_scheduled_time(selected_date: str, slot: str) -> str:
    return f"{selected_date} {slot}"


def is_visible(scheduled_at: datetime, now: datetime, window_minutes: int = 60) -> bool:
    """Scheduled orders surface `window_minutes` before they are due and stay while overdue."""
    return now >= scheduled_at - timedelta(minutes=window_minutes)


def parse_selected_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()
