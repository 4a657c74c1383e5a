"""Client-side detection of booking conflicts against tracked windows"""

from typing import Iterable, List, Optional
from datetime import date, timedelta
import logging
from charger_availability.booking_interfaces import (
    BookingStatus,
    BookingWindow,
    MalformedBookingError,
    local_date,
    parse_timestamp,
)
from charger_availability.config import Config
from charger_availability.intervals import is_valid, overlaps, slot_windows
from charger_availability.reconciliation import Reconciler


class ConflictDetector:
    """
    Report overlaps of proposed windows with known bookings.

    This never blocks a legal booking: while local data is incomplete,
    or for unusable input, no conflict is reported.
    """

    def __init__(self, reconciler: Reconciler, config: Config) -> None:
        self.reconciler = reconciler
        self.config = config

    def candidate_windows(self, charger_id: str, day: date) -> List[BookingWindow]:
        """Return tracked non-cancelled windows of charger_id starting on day."""
        return [
            window
            for window in self.reconciler.windows_for(charger_id)
            if window.status != BookingStatus.CANCELLED
            and local_date(window.start, self.config.local_timezone) == day
        ]

    def find_conflicts(
        self, charger_id: str, proposed_start: object, proposed_end: object
    ) -> List[BookingWindow]:
        """Return known windows overlapping the proposed window."""
        if not self.reconciler.snapshot_loaded:
            logging.debug(f"No conflict known for {charger_id}, snapshot incomplete.")
            return []

        try:
            start = parse_timestamp(proposed_start, self.config.local_timezone)
            end = parse_timestamp(proposed_end, self.config.local_timezone)
            day = local_date(start, self.config.local_timezone)
        except (MalformedBookingError, OverflowError) as e:
            logging.warning(f"Warning: Conflict check skipped: {e}")
            return []
        if not is_valid(start, end):
            logging.warning(
                f"Warning: Conflict check skipped for empty window {start} - {end}."
            )
            return []

        return [
            window
            for window in self.candidate_windows(charger_id, day)
            if overlaps(start, end, window.start, window.end)
        ]

    def has_conflict(
        self, charger_id: str, proposed_start: object, proposed_end: object
    ) -> bool:
        return bool(self.find_conflicts(charger_id, proposed_start, proposed_end))

    def occupied_slots(
        self,
        charger_id: str,
        day: date,
        slot_times: Optional[Iterable[str]] = None,
        slot_length: Optional[timedelta] = None,
    ) -> List[str]:
        """Return slot start times on day overlapping a known window."""
        if not self.reconciler.snapshot_loaded:
            return []

        windows = self.candidate_windows(charger_id, day)
        return [
            slot
            for slot, slot_start, slot_end in slot_windows(
                day,
                self.config.slot_times if slot_times is None else slot_times,
                self.config.slot_length if slot_length is None else slot_length,
                self.config.local_timezone,
            )
            if any(
                overlaps(slot_start, slot_end, window.start, window.end)
                for window in windows
            )
        ]
