"""Wall-clock aligned busy/free transitions for tracked bookings"""

from typing import Dict, List, Optional
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
import logging
from charger_availability.booking_interfaces import BookingWindow
from charger_availability.busy_state import BusyStateStore
from charger_availability.timers import Clock, TimerHandle, TimerQueue


class TransitionKind(IntEnum):
    # Values order transitions due at the same instant.
    BECOME_BUSY = 0
    BECOME_FREE = 1


@dataclass(eq=False)
class ScheduledTransition:
    booking_id: str
    kind: TransitionKind
    fires_at: datetime
    handle: Optional[TimerHandle] = None

    def __str__(self) -> str:
        return (
            f"ScheduledTransition(id='{self.booking_id}', kind={self.kind.name},"
            f" fires_at={self.fires_at.isoformat()})"
        )


class BookingTimerScheduler:
    """
    Translate booking windows into at most two scheduled transitions each,
    and apply them to the busy-state store exactly once.

    All timer handles are registered per booking id, so that any update
    or removal of a booking revokes its previously installed transitions.
    """

    def __init__(self, store: BusyStateStore, timers: TimerQueue, clock: Clock) -> None:
        self.store = store
        self.timers = timers
        self.clock = clock
        # Manage installed transitions per booking id.
        self.transitions: Dict[str, List[ScheduledTransition]] = {}
        # Manage windows the installed transitions were derived from.
        self.windows: Dict[str, BookingWindow] = {}
        # Manage the charger each currently contributing booking is marked on.
        self.contributions: Dict[str, str] = {}

    def schedule(self, window: BookingWindow) -> List[ScheduledTransition]:
        """
        Replace all transitions of window's booking by the ones derived
        from window and the current time. Return the installed transitions.
        """
        booking_id = window.booking_id
        self.cancel_transitions(booking_id)
        self.windows.pop(booking_id, None)
        now = self.clock.now()

        if not window.contributes:
            self.release(booking_id)
            logging.debug(f"{window} does not contribute, nothing scheduled.")
            return []

        installed: List[ScheduledTransition] = []
        if now < window.start:
            self.release(booking_id)
            installed.append(
                self.install(booking_id, TransitionKind.BECOME_BUSY, window.start)
            )
            installed.append(
                self.install(booking_id, TransitionKind.BECOME_FREE, window.end)
            )
        elif now < window.end:
            self.contribute(booking_id, window.charger_id)
            installed.append(
                self.install(booking_id, TransitionKind.BECOME_FREE, window.end)
            )
        else:
            self.release(booking_id)
            logging.debug(f"{window} has elapsed, nothing scheduled.")
            return []

        self.windows[booking_id] = window
        logging.debug(
            f"{window} scheduled: {', '.join(str(transition) for transition in installed)}."
        )
        return installed

    def install(
        self, booking_id: str, kind: TransitionKind, fires_at: datetime
    ) -> ScheduledTransition:
        transition = ScheduledTransition(booking_id, kind, fires_at)
        transition.handle = self.timers.call_at(
            fires_at, lambda: self.fire(transition), priority=int(kind)
        )
        self.transitions.setdefault(booking_id, []).append(transition)
        return transition

    def fire(self, transition: ScheduledTransition) -> None:
        """Apply transition if it is still current for its booking."""
        booking_id = transition.booking_id
        current = self.transitions.get(booking_id, [])
        if not any(check is transition for check in current):
            logging.debug(f"Stale {transition} ignored.")
            return

        current.remove(transition)
        if not current:
            del self.transitions[booking_id]
        window = self.windows[booking_id]
        if transition.kind == TransitionKind.BECOME_BUSY:
            now = self.clock.now()
            if now >= window.end:
                logging.warning(
                    f"Warning: {transition} fired at {now.isoformat()},"
                    f" after {window} had already ended."
                )
            else:
                self.contribute(booking_id, window.charger_id)
        else:
            self.release(booking_id)
        if booking_id not in self.transitions:
            del self.windows[booking_id]

    def contribute(self, booking_id: str, charger_id: str) -> None:
        """Mark booking_id as contributing to charger_id only."""
        previous = self.contributions.get(booking_id)
        if previous is not None and previous != charger_id:
            self.store.unmark_contributing(previous, booking_id)
        self.contributions[booking_id] = charger_id
        self.store.mark_contributing(charger_id, booking_id)

    def release(self, booking_id: str) -> None:
        """Remove any contribution of booking_id."""
        charger_id = self.contributions.pop(booking_id, None)
        if charger_id is not None:
            self.store.unmark_contributing(charger_id, booking_id)

    def cancel_transitions(self, booking_id: str) -> None:
        """Revoke all installed transitions of booking_id."""
        for transition in self.transitions.pop(booking_id, []):
            self.timers.cancel(transition.handle)

    def teardown(self, booking_id: str) -> None:
        """Revoke transitions and contribution of booking_id."""
        self.cancel_transitions(booking_id)
        self.windows.pop(booking_id, None)
        self.release(booking_id)

    def teardown_all(self) -> None:
        """Revoke transitions and contributions of all bookings."""
        for booking_id in set(self.transitions) | set(self.contributions):
            self.teardown(booking_id)
        assert not self.transitions and not self.contributions, (
            self.transitions,
            self.contributions,
        )

    def pending_transitions(self, booking_id: str) -> List[ScheduledTransition]:
        return list(self.transitions.get(booking_id, []))

    def pending_count(self) -> int:
        return sum(len(transitions) for transitions in self.transitions.values())
