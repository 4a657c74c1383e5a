"""Wall clocks and a cancellable timer queue driven by engine ticks"""

from typing import Callable, List, Optional
from datetime import datetime, timedelta, timezone
import heapq
import itertools
import logging


class Clock:
    """Source of the current time as aware UTC datetime."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock(Clock):
    """Clock which only moves when set or advanced explicitly."""

    def __init__(self, start: datetime) -> None:
        assert start.tzinfo is not None, f"{start} is not timezone-aware."
        self.current = start.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self.current

    def set(self, instant: datetime) -> None:
        assert instant.tzinfo is not None, f"{instant} is not timezone-aware."
        self.current = instant.astimezone(timezone.utc)

    def advance(self, delta: timedelta) -> datetime:
        self.current += delta
        return self.current


class TimerHandle:
    """Token for one scheduled callback, revocable via TimerQueue.cancel()."""

    def __init__(
        self,
        fires_at: datetime,
        callback: Callable[[], None],
        priority: int,
        sequence: int,
    ) -> None:
        self.fires_at = fires_at
        self.callback = callback
        self.priority = priority
        self.sequence = sequence
        self.cancelled = False
        self.fired = False

    def __lt__(self, other: "TimerHandle") -> bool:
        return (self.fires_at, self.priority, self.sequence) < (
            other.fires_at,
            other.priority,
            other.sequence,
        )

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "fired" if self.fired else "pending"
        return f"TimerHandle(fires_at={self.fires_at.isoformat()}, {state})"

    @property
    def pending(self) -> bool:
        return not self.cancelled and not self.fired


class TimerQueue:
    """
    Min-heap of timer handles ordered by firing time, then priority,
    then insertion order. Due handles run when run_due() is called.
    """

    def __init__(self) -> None:
        self.queue: List[TimerHandle] = []
        self.counter = itertools.count()
        # Number of cancelled handles still in queue.
        self.cancelled_count = 0

    def __len__(self) -> int:
        return len(self.queue) - self.cancelled_count

    def call_at(
        self, fires_at: datetime, callback: Callable[[], None], priority: int = 0
    ) -> TimerHandle:
        """Schedule callback to run at fires_at and return its handle."""
        handle = TimerHandle(fires_at, callback, priority, next(self.counter))
        heapq.heappush(self.queue, handle)
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        """Revoke handle so that it never runs."""
        if handle is not None and handle.pending:
            handle.cancelled = True
            self.cancelled_count += 1
            if self.cancelled_count * 2 > len(self.queue):
                self.compact()

    def compact(self) -> None:
        """Drop cancelled handles from the heap."""
        self.queue = [handle for handle in self.queue if handle.pending]
        heapq.heapify(self.queue)
        self.cancelled_count = 0

    def next_deadline(self) -> Optional[datetime]:
        """Return the firing time of the earliest pending handle."""
        while self.queue and not self.queue[0].pending:
            heapq.heappop(self.queue)
            self.cancelled_count -= 1
        return self.queue[0].fires_at if self.queue else None

    def run_due(self, now: datetime) -> int:
        """Run all pending handles due at or before now, return how many ran."""
        count = 0
        while self.queue and self.queue[0].fires_at <= now:
            handle = heapq.heappop(self.queue)
            if not handle.pending:
                self.cancelled_count -= 1
                continue
            handle.fired = True
            count += 1
            try:
                handle.callback()
            except Exception:
                logging.exception(f"Timer callback of {handle} failed.")
        return count

    def clear(self) -> None:
        """Cancel all pending handles."""
        for handle in self.queue:
            handle.cancelled = True
        self.queue.clear()
        self.cancelled_count = 0
