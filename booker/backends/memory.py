"""In-memory booking backend.

Reservations are written into an ``InMemoryAvailability`` ledger under a
single ``asyncio.Lock``, so two concurrent attempts on the same slot can
never both take its last unit of capacity, and a recurring series is
reserved all-or-nothing.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from booker.availability.memory import InMemoryAvailability, Reservation
from booker.backends.base import BookingBackend, VerificationProvider
from booker.config import settings
from booker.errors import (
    BookingCreationError,
    InstantBookingExpiredError,
    SlotUnavailableError,
)
from booker.models.booking import (
    BookingRequest,
    InstantBookingResult,
    RecurringBookingResult,
    RecurringOccurrence,
    SingleBookingResult,
)
from booker.models.event_type import EventType
from booker.privacy import redact_pii

logger = logging.getLogger(__name__)


def _new_uid() -> str:
    return secrets.token_urlsafe(12)


@dataclass
class StoredBooking:
    uid: str
    event_type_id: int
    start: datetime
    end: datetime
    responses: dict[str, Any]
    status: str = "accepted"
    id: int = 0
    payment_uid: Optional[str] = None
    recurring_event_id: Optional[str] = None
    seat_reference_uids: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    expires: Optional[datetime] = None


class InMemoryBookingBackend(BookingBackend):
    """BookingBackend that keeps bookings in process memory."""

    def __init__(
        self,
        availability: InMemoryAvailability,
        event_types: list[EventType],
        clock: Callable[[], datetime] | None = None,
        instant_ttl_seconds: int | None = None,
    ) -> None:
        self._availability = availability
        self._event_types = {et.id: et for et in event_types}
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._instant_ttl = timedelta(
            seconds=instant_ttl_seconds or settings.instant_token_ttl_seconds
        )
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self.bookings: dict[str, StoredBooking] = {}

    def register_event_type(self, event_type: EventType) -> None:
        self._event_types[event_type.id] = event_type

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _event_type(self, request: BookingRequest) -> EventType:
        event_type = self._event_types.get(request.event_type_id)
        if event_type is None:
            raise BookingCreationError(
                f"Unknown event type {request.event_type_id}", status_code=404
            )
        return event_type

    def _store(self, request: BookingRequest, start: datetime, **extra: Any) -> StoredBooking:
        booking = StoredBooking(
            uid=_new_uid(),
            id=next(self._ids),
            event_type_id=request.event_type_id,
            start=start,
            end=start + timedelta(minutes=request.duration),
            responses=dict(request.responses),
            **extra,
        )
        self.bookings[booking.uid] = booking
        self._availability.reserve(
            Reservation(
                uid=booking.uid,
                event_type_id=booking.event_type_id,
                start=booking.start,
                end=booking.end,
                expires=booking.expires,
            )
        )
        return booking

    def _lapse_instant_bookings(self) -> None:
        now = self._clock()
        for booking in self.bookings.values():
            if booking.status != "awaiting_host" or booking.expires is None:
                continue
            if now >= booking.expires:
                booking.status = "expired"
                self._availability.release(booking.uid)
                logger.info("Instant booking %s lapsed without a host", booking.id)

    def _join_seat(self, event_type: EventType, request: BookingRequest) -> SingleBookingResult:
        existing = self.bookings.get(request.booking_uid or "")
        if existing is None or existing.status != "accepted":
            raise BookingCreationError(
                f"Seated booking {request.booking_uid} not found", status_code=404
            )
        if not event_type.has_seats:
            raise BookingCreationError(
                f"Event type {event_type.id} has no seats", status_code=400
            )
        if self._availability.seats_taken(event_type.id, existing.start) >= event_type.seats_per_time_slot:
            raise SlotUnavailableError(f"No seats left at {existing.start.isoformat()}")

        seat_uid = _new_uid()
        existing.seat_reference_uids.append(seat_uid)
        self._availability.reserve(
            Reservation(
                uid=seat_uid,
                event_type_id=existing.event_type_id,
                start=existing.start,
                end=existing.end,
            )
        )
        logger.info("Seat %s added to booking %s", seat_uid, existing.uid)
        return SingleBookingResult(
            uid=existing.uid, seat_reference_uid=seat_uid, start_time=existing.start
        )

    def _reschedule(self, event_type: EventType, request: BookingRequest) -> SingleBookingResult:
        original = self.bookings.get(request.reschedule_uid or "")
        if original is None or original.status != "accepted":
            raise BookingCreationError(
                f"Booking {request.reschedule_uid} cannot be rescheduled", status_code=404
            )
        released = self._availability.release(original.uid)
        if not self._availability.is_free(event_type, request.start, request.end):
            if released is not None:
                self._availability.reserve(released)
            raise SlotUnavailableError(f"Slot {request.start.isoformat()} is taken")

        original.status = "rescheduled"
        booking = self._store(request, request.start)
        logger.info("Booking %s rescheduled to %s", original.uid, booking.uid)
        return SingleBookingResult(uid=booking.uid, start_time=booking.start)

    # ------------------------------------------------------------------
    # BookingBackend interface
    # ------------------------------------------------------------------

    async def create_booking(self, request: BookingRequest) -> SingleBookingResult:
        async with self._lock:
            self._lapse_instant_bookings()
            event_type = self._event_type(request)

            if request.reschedule_uid:
                return self._reschedule(event_type, request)
            if request.booking_uid:
                return self._join_seat(event_type, request)

            if not self._availability.is_free(event_type, request.start, request.end):
                raise SlotUnavailableError(f"Slot {request.start.isoformat()} is taken")

            payment_uid = _new_uid() if event_type.requires_payment else None
            booking = self._store(
                request,
                request.start,
                status="awaiting_payment" if payment_uid else "accepted",
                payment_uid=payment_uid,
            )
            logger.info("Created booking %s at %s", booking.uid, booking.start.isoformat())
            return SingleBookingResult(
                uid=booking.uid, payment_uid=payment_uid, start_time=booking.start
            )

    async def create_recurring_booking(
        self, request: BookingRequest, occurrence_count: int
    ) -> RecurringBookingResult:
        starts = list(request.all_recurring_dates[:occurrence_count]) or [request.start]
        length = timedelta(minutes=request.duration)

        async with self._lock:
            self._lapse_instant_bookings()
            event_type = self._event_type(request)
            for start in starts:
                if not self._availability.is_free(event_type, start, start + length):
                    raise SlotUnavailableError(
                        f"Occurrence at {start.isoformat()} is taken; no occurrence was booked"
                    )

            occurrences = []
            for start in starts:
                booking = self._store(
                    request, start, recurring_event_id=request.recurring_event_id
                )
                occurrences.append(RecurringOccurrence(uid=booking.uid, start_time=booking.start))

        logger.info(
            "Created recurring series %s with %d occurrences",
            request.recurring_event_id, len(occurrences),
        )
        return RecurringBookingResult(occurrences=occurrences)

    async def create_instant_booking(self, request: BookingRequest) -> InstantBookingResult:
        async with self._lock:
            self._lapse_instant_bookings()
            event_type = self._event_type(request)
            if not event_type.is_instant_event:
                raise BookingCreationError(
                    f"Event type {event_type.id} does not take instant bookings", status_code=400
                )
            if not self._availability.is_free(event_type, request.start, request.end):
                raise SlotUnavailableError(f"Slot {request.start.isoformat()} is taken")

            expires = self._clock() + self._instant_ttl
            booking = self._store(request, request.start, status="awaiting_host", expires=expires)

        logger.info("Created instant booking %s (expires %s)", booking.id, expires.isoformat())
        return InstantBookingResult(booking_id=booking.id, expires=expires)

    async def get_instant_booking_location(self, booking_id: int) -> dict[str, Any]:
        booking = self._by_id(booking_id)
        if booking is None:
            return {"booking": None}
        return {"booking": {"id": booking.id, "uid": booking.uid, "metadata": dict(booking.metadata)}}

    # ------------------------------------------------------------------
    # Host side
    # ------------------------------------------------------------------

    def _by_id(self, booking_id: int) -> StoredBooking | None:
        for booking in self.bookings.values():
            if booking.id == booking_id:
                return booking
        return None

    def accept_instant_booking(self, booking_id: int, video_call_url: str) -> None:
        """Mark an instant booking as accepted by a host with a meeting link."""
        booking = self._by_id(booking_id)
        if booking is None:
            raise BookingCreationError(f"Instant booking {booking_id} not found", status_code=404)
        if booking.status == "expired" or (
            booking.expires is not None and self._clock() >= booking.expires
        ):
            raise InstantBookingExpiredError(f"Instant booking {booking_id} expired")
        booking.status = "accepted"
        self._availability.confirm(booking.uid)
        booking.metadata["videoCallUrl"] = video_call_url


class InMemoryVerificationProvider(VerificationProvider):
    """VerificationProvider that issues six-digit codes and keeps them in memory."""

    def __init__(self) -> None:
        self.codes: dict[str, str] = {}

    async def send_code(self, email: str, name: str = "") -> None:
        self.codes[email.lower()] = f"{secrets.randbelow(1_000_000):06d}"
        logger.info("Verification code issued for %s", redact_pii(email))

    async def verify_code(self, email: str, code: str) -> bool:
        expected = self.codes.get(email.lower())
        if expected is None or not secrets.compare_digest(expected, code.strip()):
            return False
        del self.codes[email.lower()]
        return True
