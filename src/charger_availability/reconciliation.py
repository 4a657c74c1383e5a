"""
Reconciliation of booking snapshots and push events
into tracked booking windows and scheduled transitions
"""

from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional
from collections import deque
from dataclasses import dataclass
from datetime import datetime
import logging
from charger_availability.booking_interfaces import (
    BookingWindow,
    MalformedBookingError,
    parse_booking_record,
)
from charger_availability.config import Config
from charger_availability.push_channel import PushEventType, parse_push_message
from charger_availability.scheduler import BookingTimerScheduler


@dataclass(frozen=True)
class MalformedEvent:
    received_at: datetime
    record: object
    reason: str


class Reconciler:
    """
    Single entry point for all booking input.

    The latest applied version per booking id is authoritative.
    Live messages received before the snapshot completes are buffered
    and replayed in arrival order after it.
    """

    def __init__(self, scheduler: BookingTimerScheduler, config: Config) -> None:
        self.scheduler = scheduler
        self.config = config
        self.tracked: Dict[str, BookingWindow] = {}
        self.snapshot_loaded = False
        self.buffered: List[Mapping[str, Any]] = []
        self.diagnostics: Deque[MalformedEvent] = deque(
            maxlen=config.diagnostics_limit
        )

    def apply_booking_event(self, window: BookingWindow) -> bool:
        """
        Apply window as the latest version of its booking.
        Return whether anything changed, i.e. False for duplicates.
        """
        existing = self.tracked.get(window.booking_id)
        if existing == window:
            logging.debug(f"Duplicate {window} ignored.")
            return False

        if existing is not None:
            logging.info(f"{existing} superseded by {window}.")
        else:
            logging.info(f"{window} tracked.")
        self.tracked[window.booking_id] = window
        self.scheduler.schedule(window)
        return True

    def apply_record(self, record: Mapping[str, Any]) -> Optional[BookingWindow]:
        """Parse and apply a booking record, return its window unless malformed."""
        try:
            window = parse_booking_record(
                record,
                self.config.local_timezone,
                self.config.default_duration,
                self.config.minimum_duration,
            )
        except MalformedBookingError as e:
            self.record_malformed(record, str(e))
            return None
        self.apply_booking_event(window)
        return window

    def process_message(self, message: Mapping[str, Any]) -> Optional[BookingWindow]:
        """Apply a push message, return its booking window if it carried a valid one."""
        try:
            event_type, record = parse_push_message(message)
        except MalformedBookingError as e:
            self.record_malformed(message, str(e))
            return None
        logging.debug(f"Push event '{event_type}' received.")
        if event_type == PushEventType.CHARGER_DELETED:
            self.remove_charger(record["chargerId"])
            return None
        if event_type == PushEventType.CHARGER_ADDED:
            return None
        return self.apply_record(record)

    def receive(self, message: Mapping[str, Any]) -> Optional[BookingWindow]:
        """Process a live push message, or buffer it until the snapshot completes."""
        if not self.snapshot_loaded:
            self.buffered.append(message)
            logging.debug(
                f"Push message buffered until snapshot completes ({len(self.buffered)} buffered)."
            )
            return None
        return self.process_message(message)

    def record_malformed(self, record: object, reason: str) -> None:
        self.diagnostics.append(
            MalformedEvent(self.scheduler.clock.now(), record, reason)
        )
        logging.warning(f"Warning: Skipped malformed booking input: {reason}")

    def begin_snapshot(self) -> None:
        """Start buffering live messages until complete_snapshot()."""
        self.snapshot_loaded = False

    def complete_snapshot(self, records: Iterable[Mapping[str, Any]]) -> int:
        """
        Apply snapshot records, then replay buffered live messages.
        Return the number of valid snapshot records.
        """
        count = sum(1 for record in records if self.apply_record(record))
        self.snapshot_loaded = True
        buffered, self.buffered = self.buffered, []
        for message in buffered:
            self.process_message(message)
        logging.info(
            f"Snapshot with {count} bookings applied, {len(buffered)} buffered messages replayed."
        )
        return count

    def resync(self) -> None:
        """Re-derive transitions of all tracked bookings against the current time."""
        logging.info(f"Resynchronizing {len(self.tracked)} tracked bookings.")
        for window in list(self.tracked.values()):
            self.scheduler.schedule(window)

    def prune(self, before: datetime) -> int:
        """Forget tracked bookings which ended before before, return how many."""
        elapsed = [
            booking_id
            for booking_id, window in self.tracked.items()
            if window.end < before
        ]
        for booking_id in elapsed:
            self.scheduler.teardown(booking_id)
            del self.tracked[booking_id]
        if elapsed:
            logging.debug(f"Pruned {len(elapsed)} bookings ended before {before.isoformat()}.")
        return len(elapsed)

    def remove_charger(self, charger_id: str) -> int:
        """Forget all tracked bookings of charger_id, return how many."""
        removed = [window.booking_id for window in self.windows_for(charger_id)]
        for booking_id in removed:
            self.scheduler.teardown(booking_id)
            del self.tracked[booking_id]
        logging.info(f"{charger_id} deleted with {len(removed)} tracked bookings.")
        return len(removed)

    def teardown(self) -> None:
        """Forget all tracked bookings and revoke their transitions."""
        self.scheduler.teardown_all()
        self.tracked.clear()
        self.buffered.clear()
        self.snapshot_loaded = False

    def windows_for(self, charger_id: str) -> List[BookingWindow]:
        """Return tracked windows of charger_id ordered by start."""
        return sorted(
            (
                window
                for window in self.tracked.values()
                if window.charger_id == charger_id
            ),
            key=lambda window: (window.start, window.booking_id),
        )
