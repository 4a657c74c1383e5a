"""Busy-now state per charger, derived from contributing bookings"""

from typing import Dict, List, Set
from dataclasses import dataclass, field
import logging


@dataclass
class ChargerBusyEntry:
    charger_id: str
    contributing_booking_ids: Set[str] = field(default_factory=set)
    busy: bool = False

    def __str__(self) -> str:
        return (
            f"ChargerBusyEntry(charger='{self.charger_id}', busy={self.busy},"
            f" contributing={sorted(self.contributing_booking_ids)})"
        )


class BusyStateStore:
    """
    In-memory store of which chargers are busy now.

    A charger is busy while its set of contributing bookings is non-empty.
    The revision is bumped only when a busy flag actually flips.
    """

    def __init__(self) -> None:
        self.entries: Dict[str, ChargerBusyEntry] = {}
        self._revision = 0

    @property
    def revision(self) -> int:
        return self._revision

    def mark_contributing(self, charger_id: str, booking_id: str) -> bool:
        """
        Add booking_id to the contributing bookings of charger_id.
        Return whether the charger became busy.
        """
        entry = self.entries.get(charger_id)
        if entry is None:
            entry = self.entries[charger_id] = ChargerBusyEntry(charger_id)
        if booking_id in entry.contributing_booking_ids:
            return False

        entry.contributing_booking_ids.add(booking_id)
        if entry.busy:
            logging.debug(f"{booking_id} also contributes to busy {charger_id}.")
            return False

        entry.busy = True
        self._revision += 1
        logging.info(
            f"{charger_id} became busy due to {booking_id} (revision {self._revision})."
        )
        return True

    def unmark_contributing(self, charger_id: str, booking_id: str) -> bool:
        """
        Remove booking_id from the contributing bookings of charger_id.
        Return whether the charger became free.
        """
        entry = self.entries.get(charger_id)
        if entry is None or booking_id not in entry.contributing_booking_ids:
            return False

        entry.contributing_booking_ids.discard(booking_id)
        if entry.contributing_booking_ids:
            logging.debug(
                f"{charger_id} stays busy after {booking_id} stopped contributing."
            )
            return False

        assert entry.busy, f"{entry} was not busy with contributing bookings."
        entry.busy = False
        del self.entries[charger_id]
        self._revision += 1
        logging.info(
            f"{charger_id} became free after {booking_id} (revision {self._revision})."
        )
        return True

    def is_busy(self, charger_id: str) -> bool:
        """Return whether charger_id is busy now, False for unknown chargers."""
        entry = self.entries.get(charger_id)
        return bool(entry and entry.busy)

    def contributing_bookings(self, charger_id: str) -> Set[str]:
        entry = self.entries.get(charger_id)
        return set(entry.contributing_booking_ids) if entry else set()

    def busy_chargers(self) -> List[str]:
        return sorted(
            charger_id for charger_id, entry in self.entries.items() if entry.busy
        )

    def clear(self) -> None:
        """Drop all entries, bumping the revision if any charger was busy."""
        if any(entry.busy for entry in self.entries.values()):
            self._revision += 1
        self.entries.clear()
