"""Per-booker session: drives slot selection, the form and the booking flow.

Each booking page visit gets a BookerSession that:
  1. Holds the BookerState (selection, reschedule/seat context, verified email)
  2. Holds the BookingForm and the page's URL query state
  3. Fetches availability and checks a chosen slot against it
  4. Routes "book" through the email verification gate to the orchestrator
  5. Owns the instant-booking poller and cancels it on teardown

Typical lifecycle::

    session = BookerSession(backend=backend, availability=availability)
    session.start(username="jane", event_slug="intro", url_state=UrlState.from_query_string(qs))
    session.load_event(event_type)

    await session.select_slot(start)
    session.set_responses({"name": "Sam", "email": "sam@example.com"})
    result = await session.book()
"""

from __future__ import annotations

import logging
import secrets
import time
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable
from zoneinfo import ZoneInfo

from booker.availability.base import AvailabilitySource, Schedule, Slot, find_slot, non_empty_schedule_days
from booker.availability.memory import month_window
from booker.backends.base import BookingBackend, VerificationProvider
from booker.backends.memory import InMemoryVerificationProvider
from booker.composer import initial_form_values, resolve_duration
from booker.config import settings
from booker.debug_events import DebugBroadcaster
from booker.errors import PreconditionError
from booker.forms.fields import FORM_VIEW_BOOKING, FORM_VIEW_RESCHEDULE
from booker.forms.schema import AsyncFieldCheck, build_responses_validator
from booker.models.booking import PriorBooking
from booker.models.event_type import EventType
from booker.models.session_state import BookerState, BookingForm, SeatedEventData
from booker.orchestrator import BookingOrchestrator, SubmissionOutcome
from booker.poller import InstantBookingPoller
from booker.surface import BookerSurface, RecordingSurface
from booker.url_state import UrlState
from booker.verification import EmailVerificationGate, GateResult

log = logging.getLogger("booker.session")


class BookerPhaseView(str, Enum):
    """What the booking page is showing."""

    LOADING = "loading"
    SELECTING_DATE = "selecting_date"
    SELECTING_TIME = "selecting_time"
    BOOKING = "booking"


# ── Session registry ─────────────────────────────────────────────

_active_sessions: dict[str, "BookerSession"] = {}


def register_session(session: "BookerSession") -> str:
    """Register a session and return its unique ID."""
    session_id = secrets.token_urlsafe(18)
    session._session_id = session_id
    session._started_at = time.time()
    _active_sessions[session_id] = session
    log.info("Session registered: %s", session_id)
    return session_id


def unregister_session(session_id: str) -> None:
    _active_sessions.pop(session_id, None)
    log.info("Session unregistered: %s", session_id)


def get_active_sessions() -> dict[str, "BookerSession"]:
    return _active_sessions


def get_session(session_id: str) -> "BookerSession | None":
    return _active_sessions.get(session_id)


class BookerSession:
    """One booker's visit to an event's booking page."""

    def __init__(
        self,
        backend: BookingBackend,
        availability: AvailabilitySource,
        verification_provider: VerificationProvider | None = None,
        surface: BookerSurface | None = None,
        clock: Callable[[], datetime] | None = None,
        checks: dict[str, AsyncFieldCheck] | None = None,
        poll_interval_seconds: float | None = None,
        webapp_url: str | None = None,
    ) -> None:
        self._backend = backend
        self._availability = availability
        self._surface = surface or RecordingSurface()
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._checks = checks

        # Registry metadata (set by register_session)
        self._session_id: str = ""
        self._started_at: float = 0.0

        self.state = BookerState(
            time_zone=settings.default_time_zone, language=settings.default_locale
        )
        self.form = BookingForm()
        self.url_state = UrlState()
        self.event_type: EventType | None = None
        self.form_key = "loading"
        self._schedule: Schedule = {}
        self._hashed_link: str | None = None

        self._debug_broadcaster: DebugBroadcaster | None = None
        self.poller = InstantBookingPoller(
            backend,
            self._surface,
            clock=self._clock,
            interval_seconds=poll_interval_seconds,
            emit=self._emit_event,
        )
        self.orchestrator = BookingOrchestrator(
            backend,
            self._surface,
            poller=self.poller,
            checks=checks,
            webapp_url=webapp_url,
        )
        self.gate = EmailVerificationGate(
            verification_provider or InMemoryVerificationProvider(),
            self.state,
            self.form,
            self._surface,
            commit=self._commit,
            before_verify=lambda: self.orchestrator.before_verify_email(self.form, self.event_type),
            validate=self._validate_form,
            emit=self._emit_event,
        )

    # ── Public API ────────────────────────────────────────────

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def surface(self) -> BookerSurface:
        return self._surface

    @property
    def booker_phase(self) -> BookerPhaseView:
        if self.event_type is None:
            return BookerPhaseView.LOADING
        if self.state.selected_date is None:
            return BookerPhaseView.SELECTING_DATE
        if self.state.selected_timeslot is None:
            return BookerPhaseView.SELECTING_TIME
        return BookerPhaseView.BOOKING

    def attach_broadcaster(self, broadcaster: DebugBroadcaster) -> None:
        """Attach a debug broadcaster for real-time event streaming."""
        self._debug_broadcaster = broadcaster
        self.orchestrator.attach_broadcaster(broadcaster)

    def _emit_event(self, event_type: str, data: dict) -> None:
        if self._debug_broadcaster:
            self._debug_broadcaster.emit(event_type, self.orchestrator.phase.value, data)

    def start(
        self,
        username: str = "",
        event_slug: str = "",
        url_state: UrlState | None = None,
        time_zone: str | None = None,
        language: str | None = None,
        hashed_link: str | None = None,
    ) -> None:
        """Initialize the session from the page URL."""
        self.url_state = url_state or UrlState()
        if time_zone:
            ZoneInfo(time_zone)  # reject unknown zones early
        self.state.initialize(username, event_slug, time_zone, language)
        self._hashed_link = hashed_link

        self.state.set_reschedule_uid(self.url_state.get("rescheduleUid"))
        seat_uid = self.url_state.get("bookingUid")
        if seat_uid:
            self.state.set_seated_event_data(SeatedEventData(booking_uid=seat_uid))
        if (self.url_state.get("isInstantMeeting") or "").lower() == "true":
            self.state.set_instant_meeting(True)

        duration = self.url_state.get("duration")
        if duration and duration.isdigit():
            self.state.select_duration(int(duration))
        log.info("Session %s started for %s/%s", self._session_id, username, event_slug)

    def load_event(self, event_type: EventType, booking_data: PriorBooking | None = None) -> None:
        """Attach the loaded event type (and the booking being rescheduled, if any)."""
        self.event_type = event_type
        if booking_data is not None:
            self.state.set_booking_data(booking_data)
        if event_type.recurring_event and self.state.recurring_event_count is None:
            self.state.set_recurring_event_count(event_type.recurring_event.count)
        if event_type.has_seats:
            self.state.set_seated_event_data(
                self.state.seated_event_data.model_copy(
                    update={"seats_per_time_slot": event_type.seats_per_time_slot}
                )
            )
        self._reset_form()
        if event_type.is_instant_event and self.url_state.booking_id():
            self._resume_instant_poll()
        log.info("Session %s loaded event type %s", self._session_id, event_type.id)

    def _resume_instant_poll(self) -> None:
        """Pick up polling for an instant booking already named in the URL."""
        booking_id = self.url_state.booking_id()
        expires = self.state.instant_expiry or (
            self._clock() + timedelta(seconds=settings.instant_token_ttl_seconds)
        )
        self.state.set_instant_expiry(expires)
        self.poller.arm(booking_id, expires)
        log.info("Session %s resumed polling instant booking %s", self._session_id, booking_id)

    def _reset_form(self) -> None:
        values, key = initial_form_values(self.event_type, self.state, self.url_state)
        if key != self.form_key:
            self.form_key = key
            self.form.responses.clear()
            self.form.update_responses(values)
            self.form.clear_errors()

    # ── Selection ─────────────────────────────────────────────

    @property
    def duration(self) -> int | None:
        if self.event_type is None:
            return None
        return resolve_duration(self.event_type, self.state.selected_duration)

    async def get_schedule(self, month: date) -> Schedule:
        """Fetch availability for ``month`` in the booker's time zone."""
        if self.event_type is None:
            raise PreconditionError("Event type is not loaded")
        start, end = month_window(month, self.state.time_zone)
        self._schedule = await self._availability.get_slots(
            self.event_type, start, end, self.duration, self.state.time_zone
        )
        return self._schedule

    def available_days(self, from_date: date | None = None) -> list[date]:
        return non_empty_schedule_days(self._schedule, from_date)

    def select_date(self, day: date | None) -> None:
        self.state.select_date(day)

    def select_duration(self, minutes: int | None) -> None:
        self.state.select_duration(minutes)

    def set_recurring_count(self, count: int | None) -> None:
        if count is not None and self.event_type and self.event_type.recurring_event:
            count = max(1, min(count, self.event_type.recurring_event.count))
        self.state.set_recurring_event_count(count)

    def set_instant_meeting(self, enabled: bool) -> None:
        if enabled and self.event_type is not None and not self.event_type.is_instant_event:
            raise PreconditionError(f"Event type {self.event_type.id} does not take instant bookings")
        self.state.set_instant_meeting(enabled)

    async def select_slot(self, start: datetime) -> Slot:
        """Select ``start`` after checking it is still offered.

        Raises:
            PreconditionError: no event type is loaded or the slot is not offered.
        """
        if self.event_type is None:
            raise PreconditionError("Event type is not loaded")
        if start.tzinfo is None:
            start = start.replace(tzinfo=ZoneInfo(self.state.time_zone))

        tz = ZoneInfo(self.state.time_zone)
        local_day = start.astimezone(tz).date()
        day_start = datetime.combine(local_day, datetime.min.time(), tzinfo=tz)
        schedule = await self._availability.get_slots(
            self.event_type,
            day_start.astimezone(timezone.utc),
            (day_start + timedelta(days=1)).astimezone(timezone.utc),
            self.duration,
            self.state.time_zone,
        )
        slot = find_slot(schedule, start)
        if slot is None and not self.state.seated_event_data.booking_uid:
            raise PreconditionError(f"Slot {start.isoformat()} is not available")

        self.state.select_timeslot(start, local_day)
        return slot or Slot(start=start)

    def cancel_selection(self) -> None:
        """Go back from the form: drop the slot and any seat being joined."""
        self.state.select_timeslot(None)
        if self.state.seated_event_data.booking_uid:
            self.state.clear_seat_booking()
        self.url_state.set("bookingUid", None)

    def cancel_instant(self) -> None:
        """Give up waiting for a host to accept an instant booking."""
        self.poller.cancel()
        self.url_state.set("bookingId", None)
        self.state.set_instant_expiry(None)

    # ── Form and booking ──────────────────────────────────────

    def set_responses(self, values: dict[str, Any]) -> None:
        self.form.update_responses(values)
        self.state.set_form_values(self.form.responses)

    async def _validate_form(self) -> bool:
        view = FORM_VIEW_RESCHEDULE if self.state.reschedule_uid else FORM_VIEW_BOOKING
        result = await build_responses_validator(self.event_type, view, self._checks).validate(
            self.form.responses
        )
        if not result.ok:
            self.form.set_field_errors(result.errors)
        return result.ok

    async def _commit(self) -> SubmissionOutcome:
        return await self.orchestrator.handle_book_event(
            self.form, self.state, self.event_type, self.url_state, hashed_link=self._hashed_link
        )

    async def book(self) -> GateResult:
        """The booker pressed "confirm"."""
        return await self.gate.submit(self.event_type)

    async def verify(self, code: str) -> GateResult:
        return await self.gate.confirm(code)

    def teardown(self) -> None:
        self.poller.cancel()
        self.gate.close()
        log.info("Session %s torn down", self._session_id)

    # ── Serialization ─────────────────────────────────────────

    def to_dict(self, detail: bool = False) -> dict[str, Any]:
        """Serialize session state for the API.

        With detail=False: summary suitable for listing.
        With detail=True: adds form, errors, loading and surface state.
        """
        d: dict[str, Any] = {
            "session_id": self._session_id,
            "started_at": self._started_at,
            "booker_phase": self.booker_phase.value,
            "phase": self.orchestrator.phase.value,
            "event_type_id": self.event_type.id if self.event_type else None,
            "selected_timeslot": (
                self.state.selected_timeslot.isoformat() if self.state.selected_timeslot else None
            ),
            "instant_status": self.poller.status.value,
        }
        if detail:
            errors = self.orchestrator.errors(self.form)
            loading = self.orchestrator.loading_states
            d["state"] = self.state.model_dump(mode="json", exclude={"form_values", "verified_email"})
            d["form"] = {
                "key": self.form_key,
                "responses": self.form.responses,
                "field_errors": self.form.field_errors,
            }
            d["errors"] = {
                "has_form_errors": errors.has_form_errors,
                "form_errors": errors.form_errors,
                "data_errors": errors.data_errors,
            }
            d["loading"] = {
                "creating_booking": loading.creating_booking,
                "creating_recurring_booking": loading.creating_recurring_booking,
                "creating_instant_booking": loading.creating_instant_booking,
            }
            d["verification"] = self.gate.to_dict()
            d["url_state"] = self.url_state.to_dict()
            if isinstance(self._surface, RecordingSurface):
                d["surface"] = self._surface.to_dict()
        return d
