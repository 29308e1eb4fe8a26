"""Booking orchestrator: turns a "book" action into exactly one creation call.

Phases of one submission::

    idle -> validating -> submitting(single|recurring|instant) -> succeeded|failed -> idle

Every dispatched creation call gets a monotonically increasing attempt
number. Only the newest attempt may change what the booker sees; the
result of an older attempt that finishes late is logged and discarded.
Submitting a request identical to one still in flight is dropped without
a second call.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from booker.backends.base import BookingBackend
from booker.composer import (
    compose_booking_request,
    compose_recurring_request,
    request_fingerprint,
)
from booker.config import settings
from booker.debug_events import DebugBroadcaster
from booker.errors import (
    ERROR_BOOKING_EVENT,
    ERROR_SOMETHING_WENT_WRONG,
    BookerError,
    MalformedBookingResultError,
)
from booker.forms.fields import FORM_VIEW_BOOKING, FORM_VIEW_RESCHEDULE, get_full_name
from booker.forms.schema import AsyncFieldCheck, build_responses_validator
from booker.models.booking import (
    BookingRequest,
    BookingResult,
    InstantBookingResult,
    PaymentHandoff,
    RecurringBookingResult,
    RedirectInstruction,
    SingleBookingResult,
    SuccessQuery,
)
from booker.models.event_type import EventType
from booker.models.session_state import BookerState, BookingForm
from booker.poller import InstantBookingPoller
from booker.privacy import redact_pii
from booker.redirect import create_payment_link, format_former_time, resolve_success_redirect
from booker.surface import BookerSurface
from booker.url_state import UrlState

log = logging.getLogger("booker.orchestrator")


class BookerPhase(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# ── Intents ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class SingleIntent:
    kind = "single"


@dataclass(frozen=True)
class RecurringIntent:
    count: int
    kind = "recurring"


@dataclass(frozen=True)
class InstantIntent:
    kind = "instant"


BookingIntent = Union[SingleIntent, RecurringIntent, InstantIntent]


def select_intent(state: BookerState, event_type: EventType) -> BookingIntent:
    """Pick the creation path for a submission.

    An instant meeting always wins. A recurring series needs a recurrence
    policy, a chosen count and a fresh (non-reschedule) booking.
    """
    if state.is_instant_meeting:
        return InstantIntent()
    if event_type.recurring_event and state.recurring_event_count and not state.reschedule_uid:
        return RecurringIntent(count=state.recurring_event_count)
    return SingleIntent()


# ── Outcomes and views ───────────────────────────────────────────


class SubmissionStatus(str, Enum):
    IGNORED = "ignored"          # no slot selected
    INVALID = "invalid"          # field errors, nothing sent
    DUPLICATE = "duplicate"      # identical request already in flight
    STALE = "stale"              # superseded by a newer attempt
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class SubmissionOutcome:
    status: SubmissionStatus
    intent: Optional[BookingIntent] = None
    attempt: int = 0
    result: Optional[BookingResult] = None
    redirect_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "intent": self.intent.kind if self.intent else None,
            "attempt": self.attempt,
            "redirect_url": self.redirect_url,
            "error": self.error,
        }


@dataclass
class BookingErrors:
    has_form_errors: bool = False
    form_errors: Optional[str] = None
    data_errors: Optional[str] = None


@dataclass
class LoadingStates:
    creating_booking: bool = False
    creating_recurring_booking: bool = False
    creating_instant_booking: bool = False


# ── Orchestrator ─────────────────────────────────────────────────


class BookingOrchestrator:
    """Validates, composes and dispatches booking submissions for one session."""

    def __init__(
        self,
        backend: BookingBackend,
        surface: BookerSurface,
        poller: InstantBookingPoller | None = None,
        broadcaster: DebugBroadcaster | None = None,
        checks: dict[str, AsyncFieldCheck] | None = None,
        webapp_url: str | None = None,
    ) -> None:
        self._backend = backend
        self._surface = surface
        self._poller = poller
        self._broadcaster = broadcaster
        self._checks = checks
        self._webapp_url = settings.webapp_url if webapp_url is None else webapp_url

        self._phase = BookerPhase.IDLE
        self._attempts = itertools.count(1)
        self._latest_attempt = 0
        self._in_flight: dict[str, int] = {}
        self._loading: dict[str, int] = {"single": 0, "recurring": 0, "instant": 0}
        # Last error of each creation path, cleared when that path is dispatched again.
        self._mutation_errors: dict[str, Optional[str]] = {
            "single": None, "recurring": None, "instant": None,
        }

    # ── Public API ────────────────────────────────────────────

    @property
    def phase(self) -> BookerPhase:
        return self._phase

    @property
    def latest_attempt(self) -> int:
        return self._latest_attempt

    @property
    def loading_states(self) -> LoadingStates:
        return LoadingStates(
            creating_booking=self._loading["single"] > 0,
            creating_recurring_booking=self._loading["recurring"] > 0,
            creating_instant_booking=self._loading["instant"] > 0,
        )

    @property
    def is_submitting(self) -> bool:
        return any(self._loading.values())

    def errors(self, form: BookingForm) -> BookingErrors:
        """Aggregate the form's global error and the creation calls' errors."""
        data_error = next((e for e in self._mutation_errors.values() if e), None)
        return BookingErrors(
            has_form_errors=form.global_error is not None or data_error is not None,
            form_errors=form.global_error,
            data_errors=data_error,
        )

    def attach_broadcaster(self, broadcaster: DebugBroadcaster) -> None:
        self._broadcaster = broadcaster

    def before_verify_email(self, form: BookingForm, event_type: EventType | None) -> bool:
        """Run before a verification code is requested. False means stop."""
        if event_type is None:
            form.set_global_error(ERROR_BOOKING_EVENT)
            log.warning("Verification requested before event data was loaded")
            return False
        form.clear_errors()
        return True

    async def handle_book_event(
        self,
        form: BookingForm,
        state: BookerState,
        event_type: EventType | None,
        url_state: UrlState,
        hashed_link: str | None = None,
    ) -> SubmissionOutcome:
        """Validate, compose and dispatch one booking submission."""
        if state.selected_timeslot is None:
            log.debug("Book event ignored: no timeslot selected")
            return SubmissionOutcome(SubmissionStatus.IGNORED)

        self._transition(BookerPhase.VALIDATING)
        state.set_form_values({})
        form.clear_errors()

        view = FORM_VIEW_RESCHEDULE if state.reschedule_uid else FORM_VIEW_BOOKING
        validator = build_responses_validator(event_type, view, self._checks)
        validation = await validator.validate(form.responses)
        if not validation.ok:
            form.set_field_errors(validation.errors)
            log.info("Booking form has %d invalid field(s): %s",
                     len(validation.errors), sorted(validation.errors))
            self._settle()
            return SubmissionOutcome(SubmissionStatus.INVALID)

        # The selection may have been cleared while async checks ran.
        if state.selected_timeslot is None:
            self._settle()
            return SubmissionOutcome(SubmissionStatus.IGNORED)

        request = compose_booking_request(
            form, state, event_type, url_state,
            responses=validation.values, hashed_link=hashed_link,
        )
        if request is None:
            self._transition(BookerPhase.FAILED, {"error": form.global_error})
            self._surface.scroll_error_into_view()
            self._settle()
            return SubmissionOutcome(SubmissionStatus.FAILED, error=form.global_error)

        intent = select_intent(state, event_type)
        if isinstance(intent, RecurringIntent):
            request = compose_recurring_request(request, event_type, intent.count)

        fingerprint = f"{intent.kind}:{request_fingerprint(request)}"
        pending = self._in_flight.get(fingerprint)
        if pending is not None:
            log.info("Dropping duplicate %s submission (attempt %d still pending)",
                     intent.kind, pending)
            self._settle()
            return SubmissionOutcome(SubmissionStatus.DUPLICATE, intent=intent, attempt=pending)

        attempt = next(self._attempts)
        self._latest_attempt = attempt
        self._in_flight[fingerprint] = attempt
        self._loading[intent.kind] += 1
        self._mutation_errors[intent.kind] = None
        self._transition(BookerPhase.SUBMITTING, {"intent": intent.kind, "attempt": attempt})
        self._emit("submit", {
            "intent": intent.kind,
            "attempt": attempt,
            "start": request.start.isoformat(),
            "duration": request.duration,
            "email": redact_pii(request.responses.get("email")),
        })

        result: BookingResult | None = None
        error: Exception | None = None
        try:
            result = await self._dispatch(intent, request)
            self._check_result(intent, result)
        except BookerError as exc:
            error = exc
        except Exception as exc:
            log.exception("Unexpected error while creating %s booking", intent.kind)
            error = exc
        finally:
            self._in_flight.pop(fingerprint, None)
            self._loading[intent.kind] -= 1

        if attempt != self._latest_attempt:
            log.warning("Discarding %s of stale attempt %d (latest is %d)",
                        "failure" if error else "result", attempt, self._latest_attempt)
            self._emit("creation_result", {"attempt": attempt, "outcome": "stale"})
            if self._phase == BookerPhase.SUBMITTING and not self.is_submitting:
                self._transition(BookerPhase.IDLE)
            return SubmissionOutcome(SubmissionStatus.STALE, intent=intent, attempt=attempt, result=result)

        if error is not None:
            return self._on_failure(attempt, intent, error)

        self._emit("creation_result", {"attempt": attempt, "outcome": "ok", "intent": intent.kind})
        redirect_url = await self._on_success(intent, request, result, state, event_type, url_state)
        self._transition(BookerPhase.SUCCEEDED, {"attempt": attempt})
        self._settle()
        return SubmissionOutcome(
            SubmissionStatus.SUCCEEDED,
            intent=intent,
            attempt=attempt,
            result=result,
            redirect_url=redirect_url,
        )

    # ── Dispatch ──────────────────────────────────────────────

    async def _dispatch(self, intent: BookingIntent, request: BookingRequest) -> BookingResult:
        if isinstance(intent, InstantIntent):
            return await self._backend.create_instant_booking(request)
        if isinstance(intent, RecurringIntent):
            return await self._backend.create_recurring_booking(request, intent.count)
        return await self._backend.create_booking(request)

    @staticmethod
    def _check_result(intent: BookingIntent, result: BookingResult) -> None:
        """Raise MalformedBookingResultError when a result has no usable identifier."""
        if isinstance(intent, InstantIntent):
            if not isinstance(result, InstantBookingResult) or not result.booking_id:
                raise MalformedBookingResultError("Instant booking returned no booking id")
        elif isinstance(intent, RecurringIntent):
            canonical = result.canonical if isinstance(result, RecurringBookingResult) else None
            if canonical is None or not canonical.uid:
                raise MalformedBookingResultError("Recurring booking returned no occurrences")
        elif not isinstance(result, SingleBookingResult) or not result.uid:
            raise MalformedBookingResultError("Booking returned no uid")

    # ── Completion ────────────────────────────────────────────

    async def _on_success(
        self,
        intent: BookingIntent,
        request: BookingRequest,
        result: BookingResult,
        state: BookerState,
        event_type: EventType,
        url_state: UrlState,
    ) -> str | None:
        if isinstance(result, InstantBookingResult):
            url_state.set("bookingId", result.booking_id)
            state.set_instant_expiry(result.expires)
            if self._poller is not None:
                self._poller.arm(result.booking_id, result.expires)
            else:
                log.warning("Instant booking %s created with no poller attached", result.booking_id)
            log.info("Instant booking %s waiting for a host", result.booking_id)
            return None

        email = request.responses.get("email") or ""

        if isinstance(result, SingleBookingResult) and result.payment_uid:
            handoff = PaymentHandoff(
                payment_uid=result.payment_uid,
                booking_uid=result.uid,
                date=request.start,
                name=get_full_name(request.responses.get("name")),
                email=email,
            )
            url = create_payment_link(handoff)
            log.info("Booking %s requires payment, handing off", result.uid)
            await self._surface.navigate(url)
            return url

        if isinstance(result, RecurringBookingResult):
            booking_uid = result.canonical.uid
            seat_reference_uid = None
        else:
            booking_uid = result.uid
            seat_reference_uid = result.seat_reference_uid

        former_time = None
        if state.is_rescheduling:
            former_time = format_former_time(state.booking_data.start_time)

        instruction = RedirectInstruction(
            success_redirect_url=event_type.success_redirect_url,
            forward_params=event_type.forward_params_success_redirect,
            booking_uid=booking_uid,
            query=SuccessQuery(
                email=email,
                event_type_slug=event_type.slug,
                seat_reference_uid=seat_reference_uid,
                all_remaining_bookings=True if isinstance(intent, RecurringIntent) else None,
                former_time=former_time,
            ),
        )
        url = resolve_success_redirect(instruction, self._webapp_url)
        log.info("Booking %s confirmed for %s", booking_uid, redact_pii(email))
        await self._surface.navigate(url)
        return url

    def _on_failure(self, attempt: int, intent: BookingIntent, exc: Exception) -> SubmissionOutcome:
        if isinstance(exc, MalformedBookingResultError):
            log.error("Creation call for %s booking returned no identifier: %s", intent.kind, exc)
        else:
            log.warning("Creation call for %s booking failed: %s", intent.kind, exc)

        message = str(exc) or getattr(exc, "message_key", ERROR_SOMETHING_WENT_WRONG)
        self._mutation_errors[intent.kind] = message
        self._emit("creation_result", {"attempt": attempt, "outcome": "error", "error": message})
        self._transition(BookerPhase.FAILED, {"attempt": attempt, "error": message})
        self._surface.scroll_error_into_view()
        self._settle()
        return SubmissionOutcome(SubmissionStatus.FAILED, intent=intent, attempt=attempt, error=message)

    # ── Phases and tracing ────────────────────────────────────

    def _settle(self) -> None:
        """Leave a terminal phase: back to idle unless another call is still in flight."""
        self._transition(BookerPhase.SUBMITTING if self.is_submitting else BookerPhase.IDLE)

    def _transition(self, phase: BookerPhase, data: dict | None = None) -> None:
        previous = self._phase
        self._phase = phase
        self._emit("transition", {"from": previous.value, "to": phase.value, **(data or {})})

    def _emit(self, event_type: str, data: dict) -> None:
        if self._broadcaster:
            self._broadcaster.emit(event_type, self._phase.value, data)
