"""Helpers for the HH:MM wall-clock times used by sessions and bookings."""
from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Iterable, Tuple

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def now() -> datetime:
    """Current studio wall-clock time (naive)."""
    return datetime.now().replace(second=0, microsecond=0)


def is_hhmm(value: str) -> bool:
    return bool(_HHMM.match(value or ""))


def to_minutes(value: str) -> int:
    match = _HHMM.match(value or "")
    if not match:
        raise ValueError(f"Invalid HH:MM time: {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def from_minutes(minutes: int) -> str:
    if not 0 <= minutes <= 24 * 60 - 1:
        raise ValueError(f"Minutes out of range for a day: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def at(day: date, hhmm: str) -> datetime:
    minutes = to_minutes(hhmm)
    return datetime.combine(day, time(minutes // 60, minutes % 60))


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Half-open interval overlap: touching boundaries do not overlap."""
    return a_start < b_end and a_end > b_start


def iso_week_bounds(day: date) -> Tuple[datetime, datetime]:
    """Monday 00:00 of the ISO week containing ``day`` and the following Monday 00:00."""
    monday = day - timedelta(days=day.isoweekday() - 1)
    start = datetime.combine(monday, time.min)
    return start, start + timedelta(days=7)


def peak_usage(intervals: Iterable[Tuple[int, int, int]], start: int, end: int) -> int:
    """Highest total weight of ``(start, end, weight)`` intervals at any instant of ``[start, end)``."""
    events = []
    for i_start, i_end, weight in intervals:
        lo, hi = max(i_start, start), min(i_end, end)
        if lo < hi and weight:
            events.append((lo, weight))
            events.append((hi, -weight))
    # Ends sort before starts at the same instant.
    events.sort(key=lambda event: (event[0], event[1]))
    peak = current = 0
    for _, delta in events:
        current += delta
        peak = max(peak, current)
    return peak
