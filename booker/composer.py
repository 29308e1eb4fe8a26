"""Booking request composer: selection state + form values -> BookingRequest.

Everything here is synchronous. The orchestrator composes the request in
full before it awaits the creation call, so a slot change made while the
call is in flight can never leak into a request that was already sent.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from dateutil.rrule import DAILY, MONTHLY, WEEKLY, YEARLY, rrule

from booker.errors import ERROR_BOOKING_EVENT
from booker.forms.fields import with_system_fields
from booker.models.booking import BookingRequest
from booker.models.event_type import EventType, Frequency, RecurringEvent
from booker.models.session_state import BookerState, BookingForm
from booker.url_state import UrlState

log = logging.getLogger("booker.composer")

# Query parameters that may prefill the form on a fresh booking.
_PREFILL_KEYS = ("name", "email", "notes")


def resolve_duration(event_type: EventType, selected: int | None) -> int:
    """Duration to book, in minutes.

    Dynamic events honor any selection. Otherwise a selection is honored only
    if it is one of the event's allowed durations; anything else falls back to
    the event's default length.
    """
    if event_type.is_dynamic:
        return selected or event_type.length
    if event_type.is_allowed_duration(selected):
        return selected
    return event_type.length


def extract_metadata(url_state: UrlState) -> dict[str, str]:
    """``metadata[<name>]=value`` query parameters as ``{name: value}``."""
    return url_state.metadata()


_RRULE_FREQ = {
    Frequency.YEARLY: YEARLY,
    Frequency.MONTHLY: MONTHLY,
    Frequency.WEEKLY: WEEKLY,
    Frequency.DAILY: DAILY,
}


def occurrence_starts(
    start: datetime,
    recurring_event: RecurringEvent,
    count: int,
    time_zone: str = "UTC",
) -> list[datetime]:
    """Start instants of the first ``count`` occurrences of a series.

    The rule is expanded on the first occurrence's wall-clock time in
    ``time_zone``, so a DST change keeps the local time of day. Monthly and
    yearly series skip dates that do not exist (e.g. the 31st in a 30-day
    month).
    """
    tz = ZoneInfo(time_zone)
    local = start.astimezone(tz).replace(tzinfo=None)
    rule = rrule(
        _RRULE_FREQ[recurring_event.freq],
        dtstart=local,
        interval=recurring_event.interval,
        count=count,
    )
    return [wall.replace(tzinfo=tz).astimezone(timezone.utc) for wall in rule]


def compose_booking_request(
    form: BookingForm,
    state: BookerState,
    event_type: EventType | None,
    url_state: UrlState,
    responses: dict[str, Any] | None = None,
    hashed_link: str | None = None,
) -> BookingRequest | None:
    """Snapshot the selection and form into a BookingRequest.

    Returns None, with ``form.global_error`` set, when the event type is not
    loaded. Callers must only invoke this with a selected timeslot.
    """
    if event_type is None:
        log.warning("Booking attempted before event data was loaded")
        form.set_global_error(ERROR_BOOKING_EVENT)
        return None
    if state.selected_timeslot is None:
        raise ValueError("compose_booking_request needs a selected timeslot")

    duration = resolve_duration(event_type, state.selected_duration)
    start = state.selected_timeslot.astimezone(timezone.utc)
    booking_uid = (
        (state.booking_data.uid if state.booking_data else None)
        or state.seated_event_data.booking_uid
    )

    return BookingRequest(
        event_type_id=event_type.id,
        event_type_slug=event_type.slug,
        start=start,
        end=start + timedelta(minutes=duration),
        duration=duration,
        time_zone=state.time_zone,
        language=state.language,
        responses=dict(form.responses if responses is None else responses),
        reschedule_uid=state.reschedule_uid or None,
        booking_uid=booking_uid or None,
        username=state.username or "",
        metadata=extract_metadata(url_state),
        hashed_link=hashed_link or None,
    )


def compose_recurring_request(
    request: BookingRequest,
    event_type: EventType,
    occurrence_count: int,
) -> BookingRequest:
    """Extend a request with the occurrence dates of a recurring series."""
    if event_type.recurring_event is None:
        raise ValueError(f"Event type {event_type.id} has no recurrence policy")
    dates = occurrence_starts(
        request.start, event_type.recurring_event, occurrence_count, request.time_zone
    )
    return request.model_copy(
        update={
            "recurring_event_id": str(uuid.uuid4()),
            "all_recurring_dates": dates,
        }
    )


def request_fingerprint(request: BookingRequest) -> str:
    """Stable digest identifying what a request would book."""
    data = request.model_dump(
        mode="json", exclude={"recurring_event_id", "all_recurring_dates"}
    )
    raw = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def initial_form_values(
    event_type: EventType | None,
    state: BookerState,
    url_state: UrlState,
) -> tuple[dict[str, Any], str]:
    """Initial ``responses`` for a new form, and a key identifying the prefill source.

    A reschedule starts from the prior booking's responses. A fresh booking
    takes ``name``, ``email``, ``notes``, ``guests`` and any booking-field
    names present in the query string.
    """
    if event_type is None:
        return {}, "loading"

    if state.is_rescheduling:
        values = dict(state.booking_data.responses)
        return values, f"reschedule:{state.booking_data.uid}"

    field_names = {f.name for f in with_system_fields(event_type.booking_fields)}
    values: dict[str, Any] = {}
    for key in url_state.keys():
        if key in _PREFILL_KEYS or (key in field_names and key not in ("guests", "rescheduleReason")):
            values[key] = url_state.get(key)
    guests = [g for g in (url_state.get("guests") or "").split(",") if g.strip()]
    if guests:
        values["guests"] = [g.strip() for g in guests]

    digest = hashlib.sha1(json.dumps(values, sort_keys=True).encode("utf-8")).hexdigest()[:10]
    return values, f"booking:{event_type.id}:{digest}"
