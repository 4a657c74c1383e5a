"""
Reference booking store using SQLModel, standing in for the booking API:
bulk fetch for snapshots, booking creation with the authoritative overlap check,
and status updates which emit push messages.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from datetime import datetime, timedelta, timezone, tzinfo
import logging
import uuid
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, col, create_engine, select
from charger_availability.booking_interfaces import (
    DEFAULT_DURATION,
    BookingStatus,
    BookingWindow,
    parse_booking_record,
)
from charger_availability.intervals import overlaps


Publisher = Callable[[Dict[str, Any]], None]


class BookingConflictError(Exception):
    """Raised when a booking overlaps an existing booking of the same charger."""

    def __init__(self, window: BookingWindow, conflicts: List[str]) -> None:
        super().__init__(
            f"{window} overlaps existing bookings {', '.join(conflicts)}."
        )
        self.window = window
        self.conflicts = conflicts


def to_str(obj: object) -> str:
    return (
        str(obj) if obj is None or isinstance(obj, (bool, float, int)) else f"'{obj}'"
    )


def to_naive_utc(instant: datetime) -> datetime:
    """Return instant as naive UTC datetime, as SQLite stores it."""
    return instant.astimezone(timezone.utc).replace(tzinfo=None)


def from_naive_utc(instant: Optional[datetime]) -> Optional[datetime]:
    return None if instant is None else instant.replace(tzinfo=timezone.utc)


class Booking(SQLModel, table=True):
    id: str = Field(primary_key=True)
    charger_id: str = Field(index=True)
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_minutes: Optional[float] = None
    status: str
    last_change: datetime

    def __str__(self) -> str:
        return (
            f"Booking(id={to_str(self.id)}, charger_id={to_str(self.charger_id)},"
            f" start_time={to_str(self.start_time)}, end_time={to_str(self.end_time)},"
            f" duration_minutes={to_str(self.duration_minutes)},"
            f" status={to_str(self.status)}, last_change={to_str(self.last_change)})"
        )

    def to_record(self) -> Dict[str, Any]:
        """Return the record representation of the booking API."""
        record: Dict[str, Any] = {
            "id": self.id,
            "chargerId": self.charger_id,
            "startTime": from_naive_utc(self.start_time).isoformat(),
            "status": self.status,
        }
        if self.end_time is not None:
            record["endTime"] = from_naive_utc(self.end_time).isoformat()
        if self.duration_minutes is not None:
            record["durationMinutes"] = self.duration_minutes
        return record


def create_db_engine(database_url: str) -> Any:
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # Share one in-memory database across sessions and threads.
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url)


class BookingStore:
    def __init__(
        self,
        database_url: str = "sqlite://",
        publisher: Optional[Publisher] = None,
        local_timezone: tzinfo = timezone.utc,
        default_duration: timedelta = DEFAULT_DURATION,
    ) -> None:
        self.engine = create_db_engine(database_url)
        SQLModel.metadata.create_all(self.engine)
        self.publisher = publisher
        self.local_timezone = local_timezone
        self.default_duration = default_duration

    def window_of(self, booking: Booking) -> BookingWindow:
        return parse_booking_record(
            booking.to_record(), self.local_timezone, self.default_duration
        )

    def window_bounds(self, booking: Booking) -> Tuple[datetime, datetime]:
        window = self.window_of(booking)
        return window.start, window.end

    def publish(self, message: Dict[str, Any]) -> None:
        if self.publisher:
            self.publisher(message)

    def fetch_bookings(
        self, since: datetime, charger_ids: Optional[Iterable[str]] = None
    ) -> List[Dict[str, Any]]:
        """
        Return records of all non-cancelled bookings which end after since,
        optionally only for charger_ids, ordered by start time.
        """
        with Session(self.engine) as session:
            statement = select(Booking).where(
                Booking.status != BookingStatus.CANCELLED
            )
            if charger_ids is not None:
                statement = statement.where(col(Booking.charger_id).in_(list(charger_ids)))
            bookings = session.exec(
                statement.order_by(Booking.start_time, Booking.id)
            ).all()
            return [
                booking.to_record()
                for booking in bookings
                if self.window_of(booking).end > since
            ]

    def get_booking(self, booking_id: str) -> Dict[str, Any]:
        with Session(self.engine) as session:
            booking = session.get(Booking, booking_id)
            if booking is None:
                raise KeyError(f"No booking with id {booking_id}.")
            return booking.to_record()

    def create_booking(
        self,
        charger_id: str,
        start_time: datetime,
        end_time: Optional[datetime] = None,
        duration_minutes: Optional[float] = None,
        status: str = BookingStatus.CONFIRMED,
        booking_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a booking unless it overlaps an open booking of the same charger.
        Publish and return its record.
        """
        record: Dict[str, Any] = {
            "id": booking_id or uuid.uuid4().hex,
            "chargerId": charger_id,
            "startTime": start_time,
            "endTime": end_time,
            "durationMinutes": duration_minutes,
            "status": status,
        }
        window = parse_booking_record(
            record, self.local_timezone, self.default_duration
        )
        with Session(self.engine) as session:
            assert not session.get(
                Booking, window.booking_id
            ), f"Booking {window.booking_id} already exists."
            conflicts = [
                booking.id
                for booking in session.exec(
                    select(Booking).where(Booking.charger_id == charger_id)
                ).all()
                if booking.status
                not in (BookingStatus.CANCELLED, BookingStatus.COMPLETED)
                and overlaps(
                    window.start,
                    window.end,
                    *self.window_bounds(booking),
                )
            ]
            if conflicts:
                raise BookingConflictError(window, conflicts)

            booking = Booking(
                id=window.booking_id,
                charger_id=charger_id,
                start_time=to_naive_utc(window.start),
                end_time=to_naive_utc(window.end),
                duration_minutes=duration_minutes,
                status=window.status,
                last_change=to_naive_utc(datetime.now(timezone.utc)),
            )
            session.add(booking)
            session.commit()
            session.refresh(booking)
            created = booking.to_record()
        logging.info(f"Booking {created['id']} created for {charger_id}.")
        self.publish({"type": "booking-created", "booking": created})
        return created

    def update_status(self, booking_id: str, status: str) -> Dict[str, Any]:
        """Update the status of booking_id, publish and return its record."""
        new_status = BookingStatus.normalize(status)
        with Session(self.engine) as session:
            booking = session.get(Booking, booking_id)
            if booking is None:
                raise KeyError(f"No booking with id {booking_id}.")
            previous_status = booking.status
            booking.status = new_status
            booking.last_change = to_naive_utc(datetime.now(timezone.utc))
            session.add(booking)
            session.commit()
            session.refresh(booking)
            updated = booking.to_record()
        logging.info(
            f"Booking {booking_id} updated from '{previous_status}' to '{new_status}'."
        )
        self.publish(
            {
                "type": "booking-updated",
                "booking": updated,
                "previous_status": previous_status,
                "new_status": new_status,
            }
        )
        return updated

    def delete_bookings(self) -> None:
        """Delete all bookings."""
        with Session(self.engine) as session:
            for booking in session.exec(select(Booking)).all():
                session.delete(booking)
            session.commit()
