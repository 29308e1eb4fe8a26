"""In-memory availability source and capacity ledger.

Slots are generated from weekly working hours in the host's time zone and
filtered against what has already been reserved. The same object is the
ledger the in-memory booking backend writes reservations into, so the
slots it reports always reflect committed capacity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from booker.availability.base import AvailabilitySource, Schedule, Slot
from booker.models.event_type import EventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkingHours:
    """Bookable hours for a set of weekdays (0 = Monday)."""

    days: tuple[int, ...] = (0, 1, 2, 3, 4)
    start: time = time(9, 0)
    end: time = time(17, 0)


@dataclass
class Reservation:
    uid: str
    event_type_id: int
    start: datetime
    end: datetime
    seats: int = 1
    # Holds lapse at this instant unless confirmed first.
    expires: Optional[datetime] = None


@dataclass
class InMemoryAvailability(AvailabilitySource):
    """Availability derived from working hours and the reservations held here."""

    host_time_zone: str = "UTC"
    working_hours: list[WorkingHours] = field(default_factory=lambda: [WorkingHours()])
    slot_interval_minutes: int | None = None
    minimum_notice_minutes: int = 0
    reservations: dict[str, Reservation] = field(default_factory=dict)
    clock: Optional[Callable[[], datetime]] = None

    def _now(self) -> datetime:
        if self.clock is not None:
            return self.clock()
        return datetime.now(tz=timezone.utc)

    # ── Ledger ───────────────────────────────────────────────

    def _held(self) -> list[Reservation]:
        now = self._now()
        return [r for r in self.reservations.values() if r.expires is None or now < r.expires]

    def seats_taken(self, event_type_id: int, start: datetime) -> int:
        return sum(
            r.seats for r in self._held()
            if r.event_type_id == event_type_id and r.start == start
        )

    def is_free(self, event_type: EventType, start: datetime, end: datetime) -> bool:
        """Whether ``[start, end)`` can take one more attendee."""
        if event_type.has_seats:
            if self.seats_taken(event_type.id, start) >= event_type.seats_per_time_slot:
                return False
            # Seated bookings share their own start; anything else overlapping blocks.
            return not any(
                r.start < end and start < r.end
                for r in self._held()
                if not (r.event_type_id == event_type.id and r.start == start)
            )
        return not any(r.start < end and start < r.end for r in self._held())

    def reserve(self, reservation: Reservation) -> None:
        self.reservations[reservation.uid] = reservation
        logger.info(
            "Reserved %s for event type %s at %s",
            reservation.uid, reservation.event_type_id, reservation.start.isoformat(),
        )

    def confirm(self, uid: str) -> None:
        """Turn a lapsing hold into a permanent reservation."""
        reservation = self.reservations.get(uid)
        if reservation is not None:
            reservation.expires = None

    def release(self, uid: str) -> Reservation | None:
        released = self.reservations.pop(uid, None)
        if released:
            logger.info("Released %s", uid)
        return released

    # ── AvailabilitySource interface ─────────────────────────

    async def get_slots(
        self,
        event_type: EventType,
        start: datetime,
        end: datetime,
        duration_minutes: int,
        time_zone: str = "UTC",
    ) -> Schedule:
        host_tz = ZoneInfo(self.host_time_zone)
        booker_tz = ZoneInfo(time_zone)
        length = timedelta(minutes=duration_minutes)
        step = timedelta(minutes=self.slot_interval_minutes or duration_minutes)
        earliest = self._now() + timedelta(minutes=self.minimum_notice_minutes)

        schedule: Schedule = {}
        day = start.astimezone(host_tz).date()
        last_day = end.astimezone(host_tz).date()

        while day <= last_day:
            for hours in self.working_hours:
                if day.weekday() not in hours.days:
                    continue
                cursor = datetime.combine(day, hours.start, tzinfo=host_tz)
                day_end = datetime.combine(day, hours.end, tzinfo=host_tz)
                while cursor + length <= day_end:
                    slot_start = cursor.astimezone(timezone.utc)
                    if start <= slot_start < end and slot_start >= earliest:
                        slot = self._make_slot(event_type, slot_start, slot_start + length)
                        if slot is not None:
                            local_day = slot_start.astimezone(booker_tz).date()
                            schedule.setdefault(local_day, []).append(slot)
                    cursor += step
            day += timedelta(days=1)

        for slots in schedule.values():
            slots.sort(key=lambda s: s.start)
        return schedule

    def _make_slot(self, event_type: EventType, start: datetime, end: datetime) -> Slot | None:
        if not self.is_free(event_type, start, end):
            return None
        if event_type.has_seats and event_type.seats_show_availability_count:
            remaining = event_type.seats_per_time_slot - self.seats_taken(event_type.id, start)
            return Slot(start=start, seats_remaining=remaining)
        return Slot(start=start)


def month_window(month: date, time_zone: str = "UTC") -> tuple[datetime, datetime]:
    """UTC bounds ``[first day, first day of next month)`` of ``month`` in ``time_zone``."""
    tz = ZoneInfo(time_zone)
    first = datetime.combine(month.replace(day=1), time(0, 0), tzinfo=tz)
    if month.month == 12:
        nxt = first.replace(year=month.year + 1, month=1)
    else:
        nxt = first.replace(month=month.month + 1)
    return first.astimezone(timezone.utc), nxt.astimezone(timezone.utc)
