"""Half-open time interval arithmetic"""

from typing import Iterable, Iterator, List, Tuple
from datetime import date, datetime, time, timedelta, tzinfo


Interval = Tuple[datetime, datetime]


def overlaps(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """
    Return whether [a_start, a_end) and [b_start, b_end) overlap.

    Note: Both intervals must satisfy end > start, validate them before.
    """
    return a_start < b_end and b_start < a_end


def is_valid(start: datetime, end: datetime) -> bool:
    """Return whether [start, end) is a non-empty interval."""
    return end > start


def contains(start: datetime, end: datetime, instant: datetime) -> bool:
    """Return whether instant lies within [start, end)."""
    return start <= instant < end


def find_overlapping(
    start: datetime, end: datetime, intervals: Iterable[Interval]
) -> List[Interval]:
    """Return all intervals overlapping [start, end)."""
    return [
        (other_start, other_end)
        for other_start, other_end in intervals
        if overlaps(start, end, other_start, other_end)
    ]


def day_bounds(day: date, local_timezone: tzinfo) -> Interval:
    """Return the half-open interval covering day in local_timezone."""
    day_start = datetime.combine(day, time(), tzinfo=local_timezone)
    next_day_start = datetime.combine(
        day + timedelta(days=1), time(), tzinfo=local_timezone
    )
    return day_start, next_day_start


def parse_slot_time(slot: str) -> time:
    """Parse a slot start given as 'HH:MM'."""
    hours_str, minutes_str = slot.split(":")
    return time(int(hours_str), int(minutes_str))


def slot_windows(
    day: date, slots: Iterable[str], length: timedelta, local_timezone: tzinfo
) -> Iterator[Tuple[str, datetime, datetime]]:
    """Yield (slot, start, end) for each slot start on day in local_timezone."""
    for slot in slots:
        slot_start = datetime.combine(
            day, parse_slot_time(slot), tzinfo=local_timezone
        )
        yield slot, slot_start, slot_start + length
