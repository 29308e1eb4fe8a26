"""Abstract base class for availability sources.

An availability source answers one question: which start instants can be
booked for an event type in a date range, and how many seats remain on
each. It never mutates anything.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from booker.models.event_type import EventType


@dataclass(frozen=True)
class Slot:
    """A bookable start instant.

    ``seats_remaining`` is only set for seated events whose seat count is
    publicly visible.
    """

    start: datetime
    seats_remaining: Optional[int] = None


Schedule = dict[date, list[Slot]]


class AvailabilitySource(ABC):
    """Abstract availability backend."""

    @abstractmethod
    async def get_slots(
        self,
        event_type: EventType,
        start: datetime,
        end: datetime,
        duration_minutes: int,
        time_zone: str = "UTC",
    ) -> Schedule:
        """Return bookable slots within ``[start, end)``, grouped by local date.

        Args:
            event_type: The event being booked.
            start: Beginning of the search window.
            end: End of the search window.
            duration_minutes: Length of the booking being made.
            time_zone: IANA zone used to group slots into days.

        Returns:
            Mapping of local date to slots ordered by start.
        """


def non_empty_schedule_days(schedule: Schedule, from_date: date | None = None) -> list[date]:
    """Dates that have at least one slot, sorted, optionally from ``from_date`` on."""
    days = sorted(day for day, slots in schedule.items() if slots)
    if from_date is not None:
        days = [day for day in days if day >= from_date]
    return days


def find_slot(schedule: Schedule, start: datetime) -> Slot | None:
    """Look up the slot starting at ``start`` (compared as instants)."""
    for slots in schedule.values():
        for slot in slots:
            if slot.start == start:
                return slot
    return None
