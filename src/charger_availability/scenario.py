"""Timed push message scenarios played against an engine on a manual clock"""

from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from charger_availability.engine import AvailabilityEngine
from charger_availability.timers import ManualClock


@dataclass
class PushEvent:
    # Note: time is relative to the scenario start.
    time: timedelta
    message: Dict[str, Any]


@dataclass
class Scenario:
    start: datetime
    events: List[PushEvent] = field(default_factory=list)

    @property
    def duration(self) -> timedelta:
        return max((event.time for event in self.events), default=timedelta())


def minutes(count: float) -> timedelta:
    """Return a timedelta with count minutes."""
    return timedelta(minutes=count)


def booking_message(
    event_type: str,
    booking_id: str,
    charger_id: str,
    start: datetime,
    end: Optional[datetime] = None,
    status: str = "confirmed",
    duration_minutes: Optional[float] = None,
) -> Dict[str, Any]:
    """Return a push message in the shape the backend emits."""
    booking: Dict[str, Any] = {
        "_id": booking_id,
        "charger_id": charger_id,
        "start_time": start.isoformat(),
        "status": status,
    }
    if end is not None:
        booking["end_time"] = end.isoformat()
    if duration_minutes is not None:
        booking["duration"] = duration_minutes
    return {"type": event_type, "booking": booking}


def play(
    engine: AvailabilityEngine,
    clock: ManualClock,
    scenario: Scenario,
    charger_id: str,
    until: Optional[timedelta] = None,
    step: timedelta = minutes(1),
) -> List[Tuple[datetime, bool]]:
    """
    Advance clock from the scenario start in steps, feeding each event when due
    and ticking engine. Return the instants at which charger_id's busy flag
    was observed to change, including the initial observation.
    """
    end = scenario.start + (scenario.duration if until is None else until)
    pending = sorted(scenario.events, key=lambda event: event.time)
    clock.set(scenario.start)
    timeline: List[Tuple[datetime, bool]] = []
    while True:
        now = clock.now()
        while pending and scenario.start + pending[0].time <= now:
            engine.receive(pending.pop(0).message)
        engine.tick()
        busy = engine.is_busy(charger_id)
        if not timeline or timeline[-1][1] != busy:
            timeline.append((now, busy))
        if now >= end:
            return timeline
        next_times = [end, now + step]
        next_deadline = engine.timers.next_deadline()
        if next_deadline is not None and next_deadline > now:
            next_times.append(next_deadline)
        if pending:
            next_times.append(scenario.start + pending[0].time)
        clock.set(min(next_times))
