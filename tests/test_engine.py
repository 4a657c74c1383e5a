#!/usr/bin/env python3
"""
Tests of the availability engine on a manual clock.

Snapshots come from an in-memory booking source which can be told to fail,
push messages are queued and dispatched on engine ticks.
"""

from typing import Dict, Iterable, List, Optional, Type
from types import TracebackType
from datetime import date, datetime, timedelta, timezone
from charger_availability.config import Config
from charger_availability.engine import AvailabilityEngine
from charger_availability.scenario import PushEvent, Scenario, booking_message, minutes, play
from charger_availability.timers import ManualClock


def at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime(2024, 5, 6, hour, minute, second, tzinfo=timezone.utc)


def record(
    booking_id: str,
    start: datetime,
    end: datetime,
    charger_id: str = "C1",
    status: str = "confirmed",
) -> Dict[str, object]:
    return {
        "id": booking_id,
        "chargerId": charger_id,
        "startTime": start.isoformat(),
        "endTime": end.isoformat(),
        "status": status,
    }


class Environment:
    def __init__(
        self,
        now: datetime,
        records: Optional[Iterable[Dict[str, object]]] = None,
        fail_count: int = 0,
        config: Optional[Config] = None,
    ) -> None:
        self.clock = ManualClock(now)
        self.records = list(records) if records else []
        self.fail_count = fail_count
        self.fetch_count = 0
        self.engine = AvailabilityEngine(
            self.fetch_bookings, config if config else Config(), self.clock
        )

    def fetch_bookings(
        self, since: datetime, charger_ids: Optional[List[str]]
    ) -> List[Dict[str, object]]:
        self.fetch_count += 1
        if self.fail_count:
            self.fail_count -= 1
            raise ConnectionError("Booking API unreachable.")
        return [
            record
            for record in self.records
            if charger_ids is None or record["chargerId"] in charger_ids
        ]

    def __enter__(self) -> "Environment":
        self.engine.mount()
        return self

    def __exit__(
        self,
        exception_type: Type[BaseException],
        exception_value: BaseException,
        traceback: TracebackType,
    ) -> None:
        self.engine.unmount()

    def advance_to(self, instant: datetime) -> int:
        self.clock.set(instant)
        return self.engine.tick()


def test_snapshot_booking_active_at_mount() -> None:
    with Environment(at(14, 30), [record("B1", at(14), at(15))]) as environment:
        engine = environment.engine
        assert engine.snapshot_loaded
        assert engine.is_busy("C1"), "Active booking not busy right after mount."
        environment.advance_to(at(14, 59, 59))
        assert engine.is_busy("C1")
        environment.advance_to(at(15))
        assert not engine.is_busy("C1"), "C1 still busy at the end of its booking."


def test_conflicts_against_snapshot_booking() -> None:
    with Environment(at(14, 30), [record("B1", at(14), at(15))]) as environment:
        engine = environment.engine
        assert engine.has_conflict("C1", at(14, 30), at(14, 45))
        assert not engine.has_conflict("C1", at(15), at(15, 30)), "Touching is a conflict."
        assert not engine.has_conflict("C2", at(14, 30), at(14, 45))
        assert [window.booking_id for window in engine.find_conflicts("C1", at(13), at(17))] == ["B1"]
        assert engine.occupied_slots("C1", date(2024, 5, 6)) == ["14:00", "14:30"]


def test_back_to_back_bookings_stay_busy() -> None:
    records = [record("A", at(9), at(10)), record("B", at(10), at(11))]
    with Environment(at(8), records) as environment:
        engine = environment.engine
        assert not engine.is_busy("C1")
        instant = at(9)
        while instant < at(11):
            environment.advance_to(instant)
            assert engine.is_busy("C1"), f"C1 free at {instant}."
            assert engine.revision == 1, f"Revision changed at {instant}."
            instant += timedelta(minutes=1)
        assert engine.store.contributing_bookings("C1") == {"B"}
        environment.advance_to(at(11))
        assert not engine.is_busy("C1")
        assert engine.revision == 2


def test_cancelled_booking_never_fires() -> None:
    with Environment(at(13), [record("B1", at(14), at(15))]) as environment:
        engine = environment.engine
        engine.receive(
            {"type": "cancelled", "booking": record("B1", at(14), at(15))}
        )
        environment.advance_to(at(13, 1))
        for instant in (at(14), at(14, 30), at(15), at(15, 30)):
            environment.advance_to(instant)
            assert not engine.is_busy("C1"), f"Cancelled booking busy at {instant}."
        assert engine.revision == 0
        assert not engine.has_conflict("C1", at(14), at(15))


def test_duplicate_push_does_not_bump_revision() -> None:
    with Environment(at(14, 30)) as environment:
        engine = environment.engine
        created = {"type": "booking-created", "booking": record("B1", at(14), at(15))}
        engine.receive(created)
        environment.advance_to(at(14, 31))
        assert engine.is_busy("C1")
        assert engine.revision == 1
        engine.receive(created)
        engine.receive(dict(created))
        environment.clock.advance(timedelta(minutes=1))
        engine.tick()
        assert engine.revision == 1, "Duplicate delivery bumped the revision."
        assert engine.scheduler.pending_count() == 1


def test_snapshot_failure_is_fail_open_and_retried() -> None:
    config = Config(snapshot_retry_initial_seconds=1.0, snapshot_retry_max_seconds=3.0)
    with Environment(
        at(14, 30), [record("B1", at(14), at(15))], fail_count=3, config=config
    ) as environment:
        engine = environment.engine
        assert not engine.snapshot_loaded
        assert not engine.is_busy("C1")
        assert not engine.has_conflict("C1", at(14), at(15)), "Blocked while loading."
        # Live event arriving before the baseline is buffered.
        engine.receive(
            {"type": "updated", "booking": record("B2", at(14), at(16), charger_id="C2")}
        )
        environment.advance_to(at(14, 30, 0) + timedelta(milliseconds=500))
        assert not engine.is_busy("C2"), "Live event applied before snapshot."
        retry_times = []
        while not engine.snapshot_loaded:
            retry_times.append(engine.snapshot_retry.fires_at)
            environment.advance_to(engine.snapshot_retry.fires_at)
        assert retry_times == [
            at(14, 30, 1),
            at(14, 30, 3),
            at(14, 30, 6),
        ], retry_times
        assert environment.fetch_count == 4
        assert engine.is_busy("C1")
        assert engine.is_busy("C2"), "Buffered event not replayed."
        assert engine.has_conflict("C1", at(14), at(15))


def test_clock_moving_back_resyncs() -> None:
    with Environment(at(9, 30), [record("B1", at(9), at(10))]) as environment:
        engine = environment.engine
        assert engine.is_busy("C1")
        environment.advance_to(at(8))
        assert not engine.is_busy("C1"), "No resync after clock moved back."
        environment.advance_to(at(9))
        assert engine.is_busy("C1")
        environment.advance_to(at(10))
        assert not engine.is_busy("C1")


def test_unmount_revokes_everything() -> None:
    environment = Environment(
        at(9, 30), [record("B1", at(9), at(10)), record("B2", at(11), at(12))]
    )
    with environment:
        assert environment.engine.is_busy("C1")
    engine = environment.engine
    assert not engine.mounted
    assert not engine.is_busy("C1")
    assert len(engine.timers) == 0
    environment.advance_to(at(11, 30))
    assert not engine.is_busy("C1"), "Leaked timer fired after unmount."
    assert engine.status()["tracked_bookings"] == 0


def test_mount_scope_and_malformed_snapshot() -> None:
    records = [
        record("B1", at(9), at(10)),
        record("B2", at(9), at(10), charger_id="C2"),
        record("B3", at(9), at(8), charger_id="C3"),
    ]
    environment = Environment(at(9, 30), records)
    environment.engine.mount(["C2", "C3"])
    try:
        engine = environment.engine
        assert not engine.is_busy("C1"), "Booking out of scope tracked."
        assert engine.is_busy("C2")
        assert not engine.is_busy("C3")
        assert len(engine.diagnostics) == 1
    finally:
        engine.unmount()


def test_scenario_timeline() -> None:
    scenario = Scenario(
        at(8),
        [
            PushEvent(minutes(0), booking_message("booking-created", "B1", "C1", at(9), at(10))),
            PushEvent(minutes(30), booking_message("booking-created", "B2", "C1", at(10), duration_minutes=30)),
            PushEvent(minutes(150), booking_message("booking-updated", "B2", "C1", at(10), status="cancelled", duration_minutes=30)),
        ],
    )
    clock = ManualClock(at(8))
    engine = AvailabilityEngine(lambda since, charger_ids: [], Config(), clock)
    engine.mount()
    try:
        timeline = play(engine, clock, scenario, "C1", until=minutes(240))
    finally:
        engine.unmount()
    assert timeline == [(at(8), False), (at(9), True), (at(10, 30), False)], timeline


def test_out_of_range_input_is_skipped() -> None:
    records = [
        {**record("B0", at(9), at(10)), "startTime": "9999-12-31T23:30:00", "endTime": None},
        record("B1", at(9), at(10)),
    ]
    with Environment(at(9, 30), records) as environment:
        engine = environment.engine
        assert engine.snapshot_loaded, "Out-of-range snapshot record stopped the snapshot."
        assert engine.is_busy("C1")
        overflowing = record("B2", at(11), at(12), charger_id="C2")
        del overflowing["endTime"]
        overflowing["durationMinutes"] = 1e12
        engine.receive({"type": "created", "booking": overflowing})
        engine.receive({"type": "created", "booking": record("B3", at(9), at(11), charger_id="C3")})
        environment.advance_to(at(9, 31))
        assert engine.is_busy("C3"), "Valid message after out-of-range one lost."
        assert len(engine.diagnostics) == 2
        assert not engine.has_conflict("C1", "0001-01-01T00:00:00+01:00", at(9, 45))
        assert engine.has_conflict("C1", at(9, 30), at(9, 45))


def test_elapsed_bookings_are_forgotten() -> None:
    with Environment(at(8)) as environment:
        engine = environment.engine
        for day in range(28):
            offset = timedelta(days=day)
            engine.receive(
                {
                    "type": "created",
                    "booking": record(f"B{day}", at(9) + offset, at(10) + offset),
                }
            )
            environment.advance_to(at(9, 30) + offset)
            assert engine.is_busy("C1"), f"Booking of day {day} not busy."
            environment.advance_to(at(10) + offset)
        assert len(engine.reconciler.tracked) == 1, "Elapsed bookings still tracked."
        environment.advance_to(at(0) + timedelta(days=28))
        assert engine.status()["tracked_bookings"] == 0


if __name__ == "__main__":
    test_snapshot_booking_active_at_mount()
    test_conflicts_against_snapshot_booking()
    test_back_to_back_bookings_stay_busy()
    test_cancelled_booking_never_fires()
    test_duplicate_push_does_not_bump_revision()
    test_snapshot_failure_is_fail_open_and_retried()
    test_clock_moving_back_resyncs()
    test_unmount_revokes_everything()
    test_mount_scope_and_malformed_snapshot()
    test_scenario_timeline()
    test_out_of_range_input_is_skipped()
    test_elapsed_bookings_are_forgotten()
