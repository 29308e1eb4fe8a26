"""Tests for InMemoryBookingBackend: capacity, seats, recurring series and instant bookings."""

import asyncio
from datetime import datetime, timedelta

import pytest

from conftest import NOW, SLOT, make_event_type

from booker.availability import InMemoryAvailability
from booker.backends.memory import InMemoryBookingBackend
from booker.errors import BookingCreationError, InstantBookingExpiredError, SlotUnavailableError
from booker.models.booking import BookingRequest

INTRO = make_event_type()
WORKSHOP = make_event_type(id=8, slug="workshop", seats_per_time_slot=2)
STANDUP = make_event_type(id=9, slug="standup", recurring_event={"freq": "weekly", "count": 4})
NOW_EVENT = make_event_type(id=10, slug="now", is_instant_event=True)
PAID = make_event_type(id=11, slug="paid", price=5000)


def _request(event_type=INTRO, start: datetime = SLOT, **overrides) -> BookingRequest:
    data = {
        "event_type_id": event_type.id,
        "event_type_slug": event_type.slug,
        "start": start,
        "end": start + timedelta(minutes=event_type.length),
        "duration": event_type.length,
        "time_zone": "UTC",
        "language": "en",
        "responses": {"name": "Sam Lee", "email": "sam@example.com"},
    }
    data.update(overrides)
    return BookingRequest(**data)


@pytest.fixture
def availability(clock):
    return InMemoryAvailability(clock=clock)


@pytest.fixture
def memory_backend(availability, clock):
    return InMemoryBookingBackend(
        availability, [INTRO, WORKSHOP, STANDUP, NOW_EVENT, PAID], clock=clock, instant_ttl_seconds=90
    )


# ── Single bookings ─────────────────────────────────────────────────


class TestCreateBooking:
    async def test_creates_and_reserves(self, memory_backend, availability):
        result = await memory_backend.create_booking(_request())

        assert result.uid in memory_backend.bookings
        assert result.start_time == SLOT
        assert not availability.is_free(INTRO, SLOT, SLOT + timedelta(minutes=30))

    async def test_taken_slot(self, memory_backend):
        await memory_backend.create_booking(_request())
        with pytest.raises(SlotUnavailableError) as exc_info:
            await memory_backend.create_booking(_request())
        assert exc_info.value.status_code == 409

    async def test_concurrent_attempts_one_wins(self, memory_backend):
        results = await asyncio.gather(
            memory_backend.create_booking(_request()),
            memory_backend.create_booking(_request()),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, SlotUnavailableError)) == 1
        assert len(memory_backend.bookings) == 1

    async def test_unknown_event_type(self, memory_backend):
        with pytest.raises(BookingCreationError) as exc_info:
            await memory_backend.create_booking(_request(make_event_type(id=999)))
        assert exc_info.value.status_code == 404

    async def test_paid_event_awaits_payment(self, memory_backend):
        result = await memory_backend.create_booking(_request(PAID))

        assert result.payment_uid
        assert memory_backend.bookings[result.uid].status == "awaiting_payment"


class TestSeats:
    async def test_join_existing_booking(self, memory_backend, availability):
        first = await memory_backend.create_booking(_request(WORKSHOP))
        seat = await memory_backend.create_booking(_request(WORKSHOP, booking_uid=first.uid))

        assert seat.uid == first.uid
        assert seat.seat_reference_uid
        assert availability.seats_taken(WORKSHOP.id, SLOT) == 2

    async def test_no_seats_left(self, memory_backend):
        first = await memory_backend.create_booking(_request(WORKSHOP))
        await memory_backend.create_booking(_request(WORKSHOP, booking_uid=first.uid))

        with pytest.raises(SlotUnavailableError):
            await memory_backend.create_booking(_request(WORKSHOP, booking_uid=first.uid))

    async def test_unknown_seated_booking(self, memory_backend):
        with pytest.raises(BookingCreationError):
            await memory_backend.create_booking(_request(WORKSHOP, booking_uid="missing"))


class TestReschedule:
    async def test_moves_booking(self, memory_backend, availability):
        original = await memory_backend.create_booking(_request())
        later = SLOT + timedelta(hours=2)
        moved = await memory_backend.create_booking(_request(start=later, reschedule_uid=original.uid))

        assert memory_backend.bookings[original.uid].status == "rescheduled"
        assert moved.start_time == later
        assert availability.is_free(INTRO, SLOT, SLOT + timedelta(minutes=30))

    async def test_same_slot_allowed(self, memory_backend):
        original = await memory_backend.create_booking(_request())
        moved = await memory_backend.create_booking(_request(reschedule_uid=original.uid))
        assert moved.uid != original.uid

    async def test_taken_target_restores_original(self, memory_backend, availability):
        original = await memory_backend.create_booking(_request())
        later = SLOT + timedelta(hours=2)
        await memory_backend.create_booking(_request(start=later))

        with pytest.raises(SlotUnavailableError):
            await memory_backend.create_booking(_request(start=later, reschedule_uid=original.uid))

        assert memory_backend.bookings[original.uid].status == "accepted"
        assert not availability.is_free(INTRO, SLOT, SLOT + timedelta(minutes=30))


# ── Recurring series ────────────────────────────────────────────────


class TestRecurring:
    def _series(self, count: int) -> BookingRequest:
        dates = [SLOT + timedelta(weeks=i) for i in range(4)]
        return _request(STANDUP, recurring_event_id="series-1", all_recurring_dates=dates[:count])

    async def test_books_every_occurrence(self, memory_backend):
        result = await memory_backend.create_recurring_booking(self._series(3), 3)

        assert [o.start_time for o in result.occurrences] == [SLOT + timedelta(weeks=i) for i in range(3)]
        assert result.canonical.uid == result.occurrences[0].uid
        assert all(
            memory_backend.bookings[o.uid].recurring_event_id == "series-1" for o in result.occurrences
        )

    async def test_all_or_nothing(self, memory_backend):
        await memory_backend.create_booking(_request(start=SLOT + timedelta(weeks=2)))

        with pytest.raises(SlotUnavailableError):
            await memory_backend.create_recurring_booking(self._series(4), 4)

        assert len(memory_backend.bookings) == 1


# ── Instant bookings ────────────────────────────────────────────────


class TestInstant:
    async def test_create_and_accept(self, memory_backend):
        result = await memory_backend.create_instant_booking(_request(NOW_EVENT))
        assert result.expires == NOW + timedelta(seconds=90)

        waiting = await memory_backend.get_instant_booking_location(result.booking_id)
        assert waiting["booking"]["metadata"] == {}

        memory_backend.accept_instant_booking(result.booking_id, "https://meet.example.com/x")
        location = await memory_backend.get_instant_booking_location(result.booking_id)
        assert location["booking"]["metadata"]["videoCallUrl"] == "https://meet.example.com/x"

    async def test_accept_after_expiry(self, memory_backend, clock):
        result = await memory_backend.create_instant_booking(_request(NOW_EVENT))
        clock.advance(seconds=91)

        with pytest.raises(InstantBookingExpiredError):
            memory_backend.accept_instant_booking(result.booking_id, "https://meet.example.com/x")

    async def test_unanswered_hold_frees_slot(self, memory_backend, availability, clock):
        result = await memory_backend.create_instant_booking(_request(NOW_EVENT))
        end = SLOT + timedelta(minutes=NOW_EVENT.length)
        assert not availability.is_free(NOW_EVENT, SLOT, end)

        clock.advance(seconds=600)
        assert availability.is_free(NOW_EVENT, SLOT, end)

        retry = await memory_backend.create_instant_booking(_request(NOW_EVENT))
        assert retry.booking_id != result.booking_id
        assert memory_backend._by_id(result.booking_id).status == "expired"

    async def test_accepted_hold_is_kept(self, memory_backend, availability, clock):
        result = await memory_backend.create_instant_booking(_request(NOW_EVENT))
        memory_backend.accept_instant_booking(result.booking_id, "https://meet.example.com/x")

        clock.advance(seconds=600)
        assert not availability.is_free(NOW_EVENT, SLOT, SLOT + timedelta(minutes=NOW_EVENT.length))

    async def test_not_an_instant_event(self, memory_backend):
        with pytest.raises(BookingCreationError) as exc_info:
            await memory_backend.create_instant_booking(_request())
        assert exc_info.value.status_code == 400

    async def test_unknown_booking(self, memory_backend):
        assert await memory_backend.get_instant_booking_location(12345) == {"booking": None}
