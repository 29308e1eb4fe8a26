"""Shared fixtures: a controllable clock, event types and a mocked booking backend."""

import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from booker.backends.base import BookingBackend
from booker.models.booking import (
    InstantBookingResult,
    RecurringBookingResult,
    RecurringOccurrence,
    SingleBookingResult,
)
from booker.models.event_type import EventType
from booker.models.session_state import BookerState, BookingForm
from booker.surface import RecordingSurface

# Monday 2 Nov 2026, 08:00 UTC
NOW = datetime(2026, 11, 2, 8, 0, tzinfo=timezone.utc)
SLOT = datetime(2026, 11, 3, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_event_type(**overrides) -> EventType:
    data = {"id": 7, "slug": "intro", "title": "Intro call", "length": 30}
    data.update(overrides)
    return EventType(**data)


def make_state(timeslot: datetime | None = SLOT, **overrides) -> BookerState:
    data = {"username": "jane", "time_zone": "UTC", "language": "en"}
    data.update(overrides)
    state = BookerState(**data)
    if timeslot is not None:
        state.select_timeslot(timeslot)
    return state


def make_form(**responses) -> BookingForm:
    values = {"name": "Sam Lee", "email": "sam@example.com"}
    values.update(responses)
    return BookingForm(responses=values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def surface():
    return RecordingSurface()


@pytest.fixture
def backend():
    b = MagicMock(spec=BookingBackend)
    b.create_booking = AsyncMock(return_value=SingleBookingResult(uid="bk_1", start_time=SLOT))
    b.create_recurring_booking = AsyncMock(
        return_value=RecurringBookingResult(
            occurrences=[
                RecurringOccurrence(uid="rec_1", start_time=SLOT),
                RecurringOccurrence(uid="rec_2", start_time=SLOT + timedelta(weeks=1)),
            ]
        )
    )
    b.create_instant_booking = AsyncMock(
        return_value=InstantBookingResult(booking_id=42, expires=NOW + timedelta(seconds=90))
    )
    b.get_instant_booking_location = AsyncMock(return_value={"booking": {"metadata": {}}})
    return b
