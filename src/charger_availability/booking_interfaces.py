"""Booking window interfaces and parsing of booking records"""

from typing import Mapping, Optional, Union
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
import re


DEFAULT_DURATION = timedelta(minutes=60)


class MalformedBookingError(ValueError):
    """Raised for booking records which cannot be turned into a valid window."""


class BookingStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    ALL = (PENDING, CONFIRMED, IN_PROGRESS, COMPLETED, CANCELLED)
    # Backend spellings which denote one of the states above.
    ALIASES = {
        "active": IN_PROGRESS,
        "in_progress": IN_PROGRESS,
        "canceled": CANCELLED,
    }

    @classmethod
    def normalize(cls, status: str) -> str:
        """Return the canonical status for status, or raise MalformedBookingError."""
        lowered = str(status).strip().lower()
        lowered = cls.ALIASES.get(lowered, lowered)
        if lowered not in cls.ALL:
            raise MalformedBookingError(f"Unknown booking status '{status}'.")
        return lowered

    @classmethod
    def contributes(cls, status: str) -> bool:
        """Return whether a booking with status makes its charger busy."""
        return status in (cls.CONFIRMED, cls.IN_PROGRESS)


@dataclass(frozen=True)
class BookingWindow:
    booking_id: str
    charger_id: str
    start: datetime
    end: datetime
    status: str

    def __str__(self) -> str:
        return (
            f"BookingWindow(id='{self.booking_id}', charger='{self.charger_id}',"
            f" start={self.start.isoformat()}, end={self.end.isoformat()},"
            f" status='{self.status}')"
        )

    @property
    def contributes(self) -> bool:
        return BookingStatus.contributes(self.status)


def parse_timestamp(
    value: Union[str, datetime], local_timezone: tzinfo = timezone.utc
) -> datetime:
    """
    Parse an ISO-8601 str or datetime into an aware UTC datetime.
    Naive values are interpreted in local_timezone.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and re.match(r"\d{4}-\d{2}-\d{2}", value.strip()):
        string = value.strip()
        if string.endswith(("Z", "z")):
            string = string[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(string)
        except ValueError as e:
            raise MalformedBookingError(f"Unparsable timestamp '{value}'.") from e
    else:
        raise MalformedBookingError(f"Unparsable timestamp '{value}'.")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=local_timezone)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as e:
        raise MalformedBookingError(f"Timestamp '{value}' out of range.") from e


def local_date(instant: datetime, local_timezone: tzinfo) -> date:
    """Return the calendar date of instant as seen in local_timezone."""
    return instant.astimezone(local_timezone).date()


def _first(record: Mapping[str, object], *keys: str) -> Optional[object]:
    for key in keys:
        value = record.get(key)
        if value is not None and not (isinstance(value, str) and not value.strip()):
            return value
    return None


def _identifier(value: object) -> Optional[str]:
    # Populated references arrive as nested documents.
    if isinstance(value, Mapping):
        value = _first(value, "_id", "id")
    return None if value is None else str(value)


def parse_duration(value: object) -> timedelta:
    """Parse a duration in minutes."""
    try:
        return timedelta(minutes=float(value))
    except (TypeError, ValueError, OverflowError) as e:
        raise MalformedBookingError(f"Unparsable duration '{value}'.") from e


def shift(instant: datetime, delta: timedelta, booking_id: str) -> datetime:
    """Return instant + delta, or raise MalformedBookingError if out of range."""
    try:
        return instant + delta
    except OverflowError as e:
        raise MalformedBookingError(
            f"Booking {booking_id} ends after the last representable date."
        ) from e


def parse_booking_record(
    record: Mapping[str, object],
    local_timezone: tzinfo = timezone.utc,
    default_duration: timedelta = DEFAULT_DURATION,
    minimum_duration: timedelta = timedelta(),
) -> BookingWindow:
    """
    Parse a booking record from the booking API or the push channel
    into a validated BookingWindow.

    The end is derived from start plus duration if not given explicitly.
    Windows with end <= start are rejected, unless minimum_duration is positive,
    in which case they are clamped to it.
    """
    if not isinstance(record, Mapping):
        raise MalformedBookingError(f"Booking record is not a mapping: {record!r}")
    booking_id = _identifier(_first(record, "id", "_id", "bookingId", "booking_id"))
    if not booking_id:
        raise MalformedBookingError("Booking record without id.")
    charger_id = _identifier(_first(record, "chargerId", "charger_id"))
    if not charger_id:
        raise MalformedBookingError(f"Booking {booking_id} without charger id.")
    start_value = _first(record, "startTime", "start_time", "start")
    if start_value is None:
        raise MalformedBookingError(f"Booking {booking_id} without start time.")
    start = parse_timestamp(start_value, local_timezone)
    end_value = _first(record, "endTime", "end_time", "end")
    if end_value is not None:
        end = parse_timestamp(end_value, local_timezone)
    else:
        duration_value = _first(
            record, "durationMinutes", "duration_minutes", "duration"
        )
        end = shift(
            start,
            default_duration
            if duration_value is None
            else parse_duration(duration_value),
            booking_id,
        )
    status_value = _first(record, "status")
    if status_value is None:
        raise MalformedBookingError(f"Booking {booking_id} without status.")
    status = BookingStatus.normalize(status_value)
    if end <= start:
        if minimum_duration <= timedelta():
            raise MalformedBookingError(
                f"Booking {booking_id} ends at {end.isoformat()}"
                f" which is not after its start at {start.isoformat()}."
            )
        end = shift(start, minimum_duration, booking_id)
    try:
        # Dates of the window are evaluated in local_timezone.
        local_date(start, local_timezone)
        local_date(end, local_timezone)
    except OverflowError as e:
        raise MalformedBookingError(
            f"Booking {booking_id} lies outside the representable dates."
        ) from e
    return BookingWindow(booking_id, charger_id, start, end, status)

