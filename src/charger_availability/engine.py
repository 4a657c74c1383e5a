"""Real-time charger availability engine"""

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
from datetime import date, datetime, timedelta
import logging
import time
from charger_availability.booking_interfaces import BookingWindow, local_date
from charger_availability.busy_state import BusyStateStore
from charger_availability.config import Config
from charger_availability.conflicts import ConflictDetector
from charger_availability.intervals import day_bounds
from charger_availability.push_channel import PushChannel
from charger_availability.reconciliation import MalformedEvent, Reconciler
from charger_availability.scheduler import BookingTimerScheduler
from charger_availability.timers import Clock, SystemClock, TimerHandle, TimerQueue


BookingSource = Callable[[datetime, Optional[List[str]]], Iterable[Mapping[str, Any]]]


class AvailabilityEngine:
    """
    Client-local cache of which chargers are busy now
    and which booking windows are known per charger.

    All booking input flows through the reconciler on the engine's thread,
    all reads go through is_busy(), revision, and the conflict queries.
    """

    def __init__(
        self,
        fetch_bookings: BookingSource,
        config: Optional[Config] = None,
        clock: Optional[Clock] = None,
        push_channel: Optional[PushChannel] = None,
    ) -> None:
        self.fetch_bookings = fetch_bookings
        self.config = config if config else Config()
        self.clock = clock if clock else SystemClock()
        self.push_channel = push_channel if push_channel else PushChannel()
        self.store = BusyStateStore()
        self.timers = TimerQueue()
        self.scheduler = BookingTimerScheduler(self.store, self.timers, self.clock)
        self.reconciler = Reconciler(self.scheduler, self.config)
        self.detector = ConflictDetector(self.reconciler, self.config)
        self.active = False
        self.mounted = False
        self.charger_ids: Optional[List[str]] = None
        # Manage the pending snapshot retry and its next backoff delay.
        self.snapshot_retry: Optional[TimerHandle] = None
        self.retry_delay = timedelta(seconds=self.config.snapshot_retry_initial_seconds)
        self.last_tick: Optional[datetime] = None
        # Start of the local day up to which elapsed bookings were pruned.
        self.pruned_since: Optional[datetime] = None

    def mount(self, charger_ids: Optional[Iterable[str]] = None) -> bool:
        """
        Start tracking bookings of charger_ids, or of all chargers if None.
        Return whether the initial snapshot was loaded.
        """
        assert not self.mounted, "Engine is already mounted."
        self.mounted = True
        self.active = True
        self.charger_ids = None if charger_ids is None else list(charger_ids)
        self.retry_delay = timedelta(seconds=self.config.snapshot_retry_initial_seconds)
        self.last_tick = self.clock.now()
        self.pruned_since = None
        self.reconciler.begin_snapshot()
        self.push_channel.start()
        return self.load_snapshot()

    def snapshot_since(self) -> datetime:
        """Return the start of the viewer's current day."""
        day_start, _ = day_bounds(
            local_date(self.clock.now(), self.config.local_timezone),
            self.config.local_timezone,
        )
        return day_start

    def load_snapshot(self) -> bool:
        """Fetch and apply the booking snapshot, or schedule a retry on failure."""
        self.snapshot_retry = None
        if not self.mounted:
            return False

        try:
            records = list(self.fetch_bookings(self.snapshot_since(), self.charger_ids))
        except Exception as e:
            now = self.clock.now()
            logging.warning(
                f"Warning: Snapshot fetch failed ({e!r}),"
                f" retrying in {self.retry_delay.total_seconds():g}s."
            )
            self.snapshot_retry = self.timers.call_at(
                now + self.retry_delay, self.load_snapshot
            )
            self.retry_delay = min(
                self.retry_delay * self.config.snapshot_retry_factor,
                timedelta(seconds=self.config.snapshot_retry_max_seconds),
            )
            return False

        self.reconciler.complete_snapshot(records)
        return True

    def receive(self, message: Mapping[str, Any]) -> None:
        """Queue a push message for the next tick."""
        self.push_channel.put(message)

    def apply_booking_event(self, window: BookingWindow) -> bool:
        return self.reconciler.apply_booking_event(window)

    def tick(self) -> int:
        """
        Dispatch queued push messages and run due timers once.
        Bookings which ended before the current local day are forgotten.
        Return the number of timers run.
        """
        now = self.clock.now()
        if (
            self.last_tick is not None
            and now < self.last_tick - self.config.clock_skew_tolerance
        ):
            logging.warning(
                f"Warning: Clock moved back from {self.last_tick.isoformat()}"
                f" to {now.isoformat()}."
            )
            self.reconciler.resync()
        self.last_tick = now
        since = self.snapshot_since()
        if since != self.pruned_since:
            self.pruned_since = since
            self.reconciler.prune(since)
        for message in self.push_channel.drain():
            self.reconciler.receive(message)
        return self.timers.run_due(now)

    def unmount(self) -> None:
        """Stop tracking, revoking all timers and contributions."""
        self.active = False
        if not self.mounted:
            return

        self.mounted = False
        self.timers.cancel(self.snapshot_retry)
        self.snapshot_retry = None
        self.push_channel.stop()
        # Drop messages which arrived for the torn down state.
        self.push_channel.drain()
        self.reconciler.teardown()
        self.timers.clear()
        logging.info("Availability engine unmounted.")

    def run(self, update_interval: Optional[float] = None) -> None:
        """Tick until unmounted, sleeping at most update_interval between ticks."""
        if update_interval is None:
            update_interval = self.config.update_interval
        while self.active:
            self.tick()
            delay = update_interval
            next_deadline = self.timers.next_deadline()
            if next_deadline is not None:
                delay = min(
                    delay, (next_deadline - self.clock.now()).total_seconds()
                )
            time.sleep(max(delay, 0.0))

    @property
    def revision(self) -> int:
        return self.store.revision

    @property
    def snapshot_loaded(self) -> bool:
        return self.reconciler.snapshot_loaded

    @property
    def diagnostics(self) -> List[MalformedEvent]:
        return list(self.reconciler.diagnostics)

    def is_busy(self, charger_id: str) -> bool:
        return self.store.is_busy(charger_id)

    def busy_chargers(self) -> List[str]:
        return self.store.busy_chargers()

    def has_conflict(self, charger_id: str, start: object, end: object) -> bool:
        return self.detector.has_conflict(charger_id, start, end)

    def find_conflicts(
        self, charger_id: str, start: object, end: object
    ) -> List[BookingWindow]:
        return self.detector.find_conflicts(charger_id, start, end)

    def occupied_slots(
        self, charger_id: str, day: date, slot_times: Optional[Iterable[str]] = None
    ) -> List[str]:
        return self.detector.occupied_slots(charger_id, day, slot_times)

    def status(self) -> Dict[str, Any]:
        return {
            "mounted": self.mounted,
            "snapshot_loaded": self.snapshot_loaded,
            "revision": self.revision,
            "tracked_bookings": len(self.reconciler.tracked),
            "pending_transitions": self.scheduler.pending_count(),
            "busy_chargers": self.busy_chargers(),
            "malformed_events": len(self.reconciler.diagnostics),
        }
