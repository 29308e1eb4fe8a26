"""Tests for BookerSession: full booking flows against the in-memory backend."""

from datetime import date, timedelta
from urllib.parse import parse_qs, urlsplit

import pytest

from conftest import NOW, SLOT, make_event_type

from booker.availability import InMemoryAvailability
from booker.backends.memory import InMemoryBookingBackend, InMemoryVerificationProvider
from booker.errors import PreconditionError
from booker.models.booking import PriorBooking
from booker.orchestrator import BookerPhase, SubmissionStatus
from booker.poller import PollStatus
from booker.session import (
    BookerPhaseView,
    BookerSession,
    get_active_sessions,
    get_session,
    register_session,
    unregister_session,
)
from booker.url_state import UrlState
from booker.verification import GateStatus

INTRO = make_event_type(multiple_duration=[15, 30, 60])
WORKSHOP = make_event_type(id=8, slug="workshop", seats_per_time_slot=2)
STANDUP = make_event_type(id=9, slug="standup", recurring_event={"freq": "weekly", "count": 4})
NOW_EVENT = make_event_type(id=10, slug="now", is_instant_event=True)
VERIFIED = make_event_type(id=11, slug="verified", requires_booker_email_verification=True)

RESPONSES = {"name": "Sam Lee", "email": "sam@example.com"}


@pytest.fixture
def availability(clock):
    return InMemoryAvailability(clock=clock)


@pytest.fixture
def memory_backend(availability, clock):
    return InMemoryBookingBackend(
        availability, [INTRO, WORKSHOP, STANDUP, NOW_EVENT, VERIFIED], clock=clock
    )


@pytest.fixture
def provider():
    return InMemoryVerificationProvider()


@pytest.fixture
def new_session(memory_backend, availability, provider, clock):
    created = []

    def factory(event_type=INTRO, query: str = "", booking_data=None) -> BookerSession:
        session = BookerSession(
            memory_backend,
            availability,
            verification_provider=provider,
            clock=clock,
            poll_interval_seconds=0.01,
            webapp_url="",
        )
        session.start("jane", event_type.slug, UrlState.from_query_string(query))
        session.load_event(event_type, booking_data=booking_data)
        created.append(session)
        return session

    yield factory
    for session in created:
        session.teardown()


def _query(url: str) -> dict[str, list[str]]:
    return parse_qs(urlsplit(url).query)


# ── Start and load ──────────────────────────────────────────────────


class TestStart:
    def test_reads_url_state(self, new_session):
        session = new_session(NOW_EVENT, query="duration=15&isInstantMeeting=true&bookingUid=seat_1")

        assert session.state.selected_duration == 15
        assert session.state.is_instant_meeting is True
        assert session.state.seated_event_data.booking_uid == "seat_1"
        assert session.state.username == "jane"

    def test_unknown_time_zone_rejected(self, memory_backend, availability):
        session = BookerSession(memory_backend, availability)
        with pytest.raises(KeyError):
            session.start("jane", "intro", time_zone="Mars/Olympus")

    def test_recurring_count_defaults_to_policy(self, new_session):
        session = new_session(STANDUP)
        assert session.state.recurring_event_count == 4

    def test_seat_capacity_recorded(self, new_session):
        session = new_session(WORKSHOP)
        assert session.state.seated_event_data.seats_per_time_slot == 2

    def test_form_prefilled_from_query(self, new_session):
        session = new_session(query="name=Sam&email=sam%40example.com")
        assert session.form.responses == {"name": "Sam", "email": "sam@example.com"}
        assert session.form_key.startswith("booking:7:")

    def test_reload_with_same_source_keeps_edits(self, new_session):
        session = new_session(query="name=Sam")
        session.set_responses({"notes": "hello"})
        session.load_event(INTRO)
        assert session.form.responses["notes"] == "hello"


# ── Selection ───────────────────────────────────────────────────────


class TestSelection:
    async def test_phases(self, new_session, memory_backend, availability):
        unloaded = BookerSession(memory_backend, availability)
        assert unloaded.booker_phase == BookerPhaseView.LOADING

        session = new_session()
        assert session.booker_phase == BookerPhaseView.SELECTING_DATE
        session.select_date(date(2026, 11, 3))
        assert session.booker_phase == BookerPhaseView.SELECTING_TIME
        await session.select_slot(SLOT)
        assert session.booker_phase == BookerPhaseView.BOOKING

    async def test_schedule_and_days(self, new_session):
        session = new_session()
        schedule = await session.get_schedule(date(2026, 11, 1))

        days = session.available_days()
        assert days[0] == NOW.date()
        assert date(2026, 11, 7) not in schedule
        assert session.available_days(date(2026, 11, 28)) == [date(2026, 11, 30)]

    async def test_schedule_needs_event(self, memory_backend, availability):
        with pytest.raises(PreconditionError):
            await BookerSession(memory_backend, availability).get_schedule(date(2026, 11, 1))

    async def test_slot_not_offered(self, new_session):
        session = new_session()
        with pytest.raises(PreconditionError):
            await session.select_slot(SLOT.replace(hour=3))
        assert session.state.selected_timeslot is None

    async def test_selected_date_is_booker_local_day(self, memory_backend, availability, clock):
        session = BookerSession(memory_backend, availability, clock=clock)
        session.start("jane", "intro", time_zone="Pacific/Auckland")
        session.load_event(INTRO)

        await session.select_slot(SLOT.replace(hour=14))
        # 14:00 UTC Tuesday is 03:00 Wednesday in Auckland
        assert session.state.selected_date == date(2026, 11, 4)

    def test_duration_resolution(self, new_session):
        session = new_session()
        session.select_duration(60)
        assert session.duration == 60
        session.select_duration(45)
        assert session.duration == 30

    def test_recurring_count_clamped(self, new_session):
        session = new_session(STANDUP)
        session.set_recurring_count(10)
        assert session.state.recurring_event_count == 4
        session.set_recurring_count(0)
        assert session.state.recurring_event_count == 1

    def test_instant_needs_instant_event(self, new_session):
        with pytest.raises(PreconditionError):
            new_session().set_instant_meeting(True)

    async def test_cancel_selection_drops_seat(self, new_session):
        session = new_session(WORKSHOP, query="bookingUid=seat_1")
        await session.select_slot(SLOT)
        session.cancel_selection()

        assert session.state.selected_timeslot is None
        assert session.state.seated_event_data.booking_uid is None
        assert session.url_state.get("bookingUid") is None


# ── Booking flows ───────────────────────────────────────────────────


class TestBookingFlows:
    async def test_single_booking(self, new_session, memory_backend):
        session = new_session()
        await session.select_slot(SLOT)
        session.set_responses(RESPONSES)

        result = await session.book()

        assert result.status == GateStatus.COMMITTED
        outcome = result.outcome
        assert outcome.status == SubmissionStatus.SUCCEEDED
        assert urlsplit(outcome.redirect_url).path == f"/booking/{outcome.result.uid}"
        assert session.surface.navigations == [outcome.redirect_url]
        assert session.orchestrator.phase == BookerPhase.IDLE
        assert outcome.result.uid in memory_backend.bookings

    async def test_invalid_form_sends_nothing(self, new_session, memory_backend):
        session = new_session()
        await session.select_slot(SLOT)
        session.set_responses({"name": "Sam Lee"})

        result = await session.book()

        assert result.outcome.status == SubmissionStatus.INVALID
        assert session.form.field_errors == {"email": "error_required_field"}
        assert memory_backend.bookings == {}

    async def test_lost_race_keeps_form(self, new_session):
        first, second = new_session(), new_session()
        for session in (first, second):
            await session.select_slot(SLOT)
            session.set_responses(RESPONSES)

        assert (await first.book()).outcome.status == SubmissionStatus.SUCCEEDED
        lost = (await second.book()).outcome

        assert lost.status == SubmissionStatus.FAILED
        assert second.form.responses["email"] == "sam@example.com"
        assert second.orchestrator.errors(second.form).data_errors
        assert second.surface.navigations == []

    async def test_reschedule(self, new_session, memory_backend):
        original = new_session()
        await original.select_slot(SLOT)
        original.set_responses(RESPONSES)
        old_uid = (await original.book()).outcome.result.uid

        prior = PriorBooking(uid=old_uid, start_time=SLOT, responses=RESPONSES)
        session = new_session(query=f"rescheduleUid={old_uid}", booking_data=prior)
        assert session.form.responses == RESPONSES

        await session.select_slot(SLOT + timedelta(hours=2))
        outcome = (await session.book()).outcome

        assert outcome.status == SubmissionStatus.SUCCEEDED
        assert _query(outcome.redirect_url)["formerTime"] == ["Tue, 03 Nov 2026 10:00:00 GMT"]
        assert memory_backend.bookings[old_uid].status == "rescheduled"

    async def test_recurring_series(self, new_session, memory_backend):
        session = new_session(STANDUP)
        session.set_recurring_count(3)
        await session.select_slot(SLOT)
        session.set_responses(RESPONSES)

        outcome = (await session.book()).outcome

        assert outcome.status == SubmissionStatus.SUCCEEDED
        assert len(outcome.result.occurrences) == 3
        assert urlsplit(outcome.redirect_url).path == f"/booking/{outcome.result.occurrences[0].uid}"
        assert _query(outcome.redirect_url)["allRemainingBookings"] == ["true"]
        assert len(memory_backend.bookings) == 3

    async def test_join_seat(self, new_session):
        host = new_session(WORKSHOP)
        await host.select_slot(SLOT)
        host.set_responses(RESPONSES)
        booking_uid = (await host.book()).outcome.result.uid

        guest = new_session(WORKSHOP, query=f"bookingUid={booking_uid}")
        await guest.select_slot(SLOT)
        guest.set_responses({"name": "Ana", "email": "ana@example.com"})
        outcome = (await guest.book()).outcome

        assert outcome.status == SubmissionStatus.SUCCEEDED
        assert urlsplit(outcome.redirect_url).path == f"/booking/{booking_uid}"
        assert _query(outcome.redirect_url)["seatReferenceUid"] == [outcome.result.seat_reference_uid]

    async def test_instant_meeting_resolves(self, new_session, memory_backend):
        session = new_session(NOW_EVENT)
        session.set_instant_meeting(True)
        await session.select_slot(SLOT)
        session.set_responses(RESPONSES)

        outcome = (await session.book()).outcome
        booking_id = session.url_state.booking_id()

        assert outcome.status == SubmissionStatus.SUCCEEDED
        assert outcome.redirect_url is None
        assert booking_id == outcome.result.booking_id
        assert session.poller.status == PollStatus.PENDING

        memory_backend.accept_instant_booking(booking_id, "https://meet.example.com/now")

        assert await session.poller.wait() == PollStatus.RESOLVED
        assert session.surface.navigations == ["https://meet.example.com/now"]

    async def test_cancel_instant(self, new_session):
        session = new_session(NOW_EVENT)
        session.set_instant_meeting(True)
        await session.select_slot(SLOT)
        session.set_responses(RESPONSES)
        await session.book()

        session.cancel_instant()

        assert session.poller.status == PollStatus.CANCELLED
        assert session.url_state.get("bookingId") is None
        assert session.state.instant_expiry is None

    async def test_reopened_link_resumes_polling(self, new_session, memory_backend, clock):
        first = new_session(NOW_EVENT)
        first.set_instant_meeting(True)
        await first.select_slot(SLOT)
        first.set_responses(RESPONSES)
        booking_id = (await first.book()).outcome.result.booking_id
        first.teardown()

        reopened = new_session(NOW_EVENT, query=f"isInstantMeeting=true&bookingId={booking_id}")

        assert reopened.poller.status == PollStatus.PENDING
        assert reopened.state.instant_expiry > clock()

        memory_backend.accept_instant_booking(booking_id, "https://meet.example.com/now")
        assert await reopened.poller.wait() == PollStatus.RESOLVED
        assert reopened.surface.navigations == ["https://meet.example.com/now"]

    def test_booking_id_ignored_for_regular_event(self, new_session):
        session = new_session(INTRO, query="bookingId=42")
        assert session.poller.status != PollStatus.PENDING


class TestVerificationFlow:
    async def test_challenge_then_book(self, new_session, provider, memory_backend):
        session = new_session(VERIFIED)
        await session.select_slot(SLOT)
        session.set_responses(RESPONSES)

        challenged = await session.book()
        assert challenged.status == GateStatus.CHALLENGED
        assert memory_backend.bookings == {}

        rejected = await session.verify("not-a-code")
        assert rejected.status == GateStatus.REJECTED
        assert session.gate.is_modal_open

        result = await session.verify(provider.codes["sam@example.com"])
        assert result.status == GateStatus.COMMITTED
        assert result.outcome.status == SubmissionStatus.SUCCEEDED
        assert session.state.verified_email == "sam@example.com"

    async def test_invalid_form_blocks_challenge(self, new_session, provider):
        session = new_session(VERIFIED)
        await session.select_slot(SLOT)
        session.set_responses({"email": "sam@example.com"})

        result = await session.book()

        assert result.status == GateStatus.BLOCKED
        assert "name" in session.form.field_errors
        assert provider.codes == {}


# ── Registry and serialization ──────────────────────────────────────


class TestRegistry:
    def test_register_and_unregister(self, new_session):
        session = new_session()
        sid = register_session(session)

        assert session.session_id == sid
        assert get_session(sid) is session
        assert sid in get_active_sessions()

        unregister_session(sid)
        assert get_session(sid) is None

    async def test_to_dict(self, new_session):
        session = new_session()
        await session.select_slot(SLOT)
        summary = session.to_dict()

        assert summary["booker_phase"] == "booking"
        assert summary["phase"] == "idle"
        assert summary["event_type_id"] == 7
        assert summary["selected_timeslot"] == SLOT.isoformat()
        assert "form" not in summary

        detail = session.to_dict(detail=True)
        assert detail["loading"] == {
            "creating_booking": False,
            "creating_recurring_booking": False,
            "creating_instant_booking": False,
        }
        assert detail["errors"]["has_form_errors"] is False
        assert detail["verification"]["modal_open"] is False
        assert "verified_email" not in detail["state"]
        assert detail["surface"]["navigations"] == []
