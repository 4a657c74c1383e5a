#!/usr/bin/env python3
from datetime import date, datetime, timedelta, timezone
from charger_availability.intervals import (
    contains,
    day_bounds,
    find_overlapping,
    is_valid,
    overlaps,
    slot_windows,
)


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 5, 6, hour, minute, tzinfo=timezone.utc)


def test_overlap_boundaries() -> None:
    assert not overlaps(at(10), at(11), at(11), at(12)), "Touching windows overlap."
    assert not overlaps(at(11), at(12), at(10), at(11)), "Touching windows overlap."
    assert overlaps(at(10), at(11), at(10, 59), at(12))
    assert overlaps(at(10), at(12), at(10, 30), at(11)), "Nested windows must overlap."
    assert overlaps(at(10), at(11), at(10), at(11)), "Equal windows must overlap."
    assert not overlaps(at(8), at(9), at(10), at(11))


def test_validity_and_containment() -> None:
    assert is_valid(at(10), at(11))
    assert not is_valid(at(10), at(10))
    assert not is_valid(at(11), at(10))
    assert contains(at(10), at(11), at(10))
    assert contains(at(10), at(11), at(10, 59))
    assert not contains(at(10), at(11), at(11))


def test_find_overlapping() -> None:
    intervals = [(at(9), at(10)), (at(10), at(11)), (at(11), at(12))]
    assert find_overlapping(at(10, 30), at(11, 30), intervals) == intervals[1:]
    assert find_overlapping(at(12), at(13), intervals) == []


def test_day_bounds_and_slots() -> None:
    day_start, next_day_start = day_bounds(date(2024, 5, 6), timezone.utc)
    assert day_start == at(0)
    assert next_day_start - day_start == timedelta(days=1)
    slots = list(
        slot_windows(
            date(2024, 5, 6), ["09:00", "09:30"], timedelta(minutes=30), timezone.utc
        )
    )
    assert slots == [
        ("09:00", at(9), at(9, 30)),
        ("09:30", at(9, 30), at(10)),
    ], slots


if __name__ == "__main__":
    test_overlap_boundaries()
    test_validity_and_containment()
    test_find_overlapping()
    test_day_bounds_and_slots()
