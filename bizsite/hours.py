"""Opening-hours parsing and the "is currently open" query.

Hours are free text per weekday. Best-effort formats:
    "09:00-12:00, 14:00-18:00"   "9h-18h"   "09h30-19h00"   "closed"
Anything else is kept as display text and reported as unparseable.
"""

import re
from datetime import datetime, time

from .catalog import WEEKDAYS

CLOSED_WORDS = ("closed", "fermé", "ferme")

DAY_LABELS = {
    "monday": "Monday",
    "tuesday": "Tuesday",
    "wednesday": "Wednesday",
    "thursday": "Thursday",
    "friday": "Friday",
    "saturday": "Saturday",
    "sunday": "Sunday",
}

_TIME_RE = re.compile(r"^(\d{1,2})(?:\s*[:hH.]\s*(\d{2})?)?$")


def _parse_time(text: str) -> time | None:
    match = _TIME_RE.match(text.strip())
    if not match:
        return None
    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    if hours == 24 and minutes == 0:
        return time(23, 59, 59)
    if hours > 23 or minutes > 59:
        return None
    return time(hours, minutes)


def parse_hours(text: str | None) -> list[tuple[time, time]] | None:
    """
    Parse one day's hours into (start, end) ranges.

    Returns [] for a closed day and None when the text cannot be parsed
    (including an empty string, which carries no information).
    """
    if text is None:
        return None
    cleaned = text.strip()
    if not cleaned:
        return None
    if cleaned.lower() in CLOSED_WORDS:
        return []

    ranges = []
    for part in cleaned.split(","):
        bounds = re.split(r"\s*[-–]\s*", part.strip())
        if len(bounds) != 2:
            return None
        start, end = _parse_time(bounds[0]), _parse_time(bounds[1])
        if start is None or end is None or start == end:
            return None
        ranges.append((start, end))
    return ranges


def is_parseable(text: str | None) -> bool:
    return parse_hours(text) is not None


def _overnight(start: time, end: time) -> bool:
    return end < start


def is_currently_open(hours: dict[str, str] | None, at: datetime) -> bool | None:
    """
    True/False if today's hours are parseable, None when unknown.

    A range that ends before it starts, e.g. "22:00-02:00", runs past
    midnight: its evening part belongs to its own day and the early-morning
    part to the next day.

    Callers must treat None as "unknown", never as "closed".
    """
    if not hours:
        return None
    index = at.weekday()
    moment = at.time().replace(tzinfo=None)

    yesterday = parse_hours(hours.get(WEEKDAYS[index - 1])) or []
    if any(_overnight(start, end) and moment < end for start, end in yesterday):
        return True

    today = parse_hours(hours.get(WEEKDAYS[index]))
    if today is None:
        return None
    for start, end in today:
        if _overnight(start, end):
            if moment >= start:
                return True
        elif start <= moment < end:
            return True
    return False


def format_hours(hours: dict[str, str] | None) -> list[tuple[str, str]]:
    """(day label, text) rows for the days that have something to show."""
    if not hours:
        return []
    return [
        (DAY_LABELS[day], hours[day].strip())
        for day in WEEKDAYS
        if hours.get(day) and hours[day].strip()
    ]
