"""Pydantic models for the mutable per-session booker state.

The booker store is an explicit object passed to each operation. Writes go
through the named transition methods below so every mutation is visible at
the call site.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from booker.models.booking import PriorBooking


class SeatedEventData(BaseModel):
    """An existing seated booking the attendee is joining."""

    booking_uid: Optional[str] = None
    seats_per_time_slot: Optional[int] = None
    attendees: Optional[int] = None


class BookerState(BaseModel):
    """Session-scoped selection and store state for one booker."""

    username: str = ""
    event_slug: str = ""
    time_zone: str = "UTC"
    language: str = "en"

    selected_date: Optional[date] = None
    selected_timeslot: Optional[datetime] = None
    selected_duration: Optional[int] = None
    recurring_event_count: Optional[int] = None
    is_instant_meeting: bool = False

    reschedule_uid: Optional[str] = None
    booking_data: Optional[PriorBooking] = None
    seated_event_data: SeatedEventData = Field(default_factory=SeatedEventData)

    verified_email: Optional[str] = None
    form_values: dict[str, Any] = {}
    instant_expiry: Optional[datetime] = None

    @property
    def is_rescheduling(self) -> bool:
        return bool(self.reschedule_uid) and self.booking_data is not None

    # ── Transitions ───────────────────────────────────────────

    def initialize(
        self,
        username: str,
        event_slug: str,
        time_zone: str | None = None,
        language: str | None = None,
    ) -> None:
        self.username = username
        self.event_slug = event_slug
        if time_zone:
            self.time_zone = time_zone
        if language:
            self.language = language

    def set_reschedule_uid(self, uid: str | None) -> None:
        self.reschedule_uid = uid or None

    def set_booking_data(self, booking: PriorBooking | None) -> None:
        self.booking_data = booking

    def set_instant_meeting(self, enabled: bool) -> None:
        self.is_instant_meeting = enabled

    def select_date(self, value: date | None) -> None:
        self.selected_date = value
        self.selected_timeslot = None

    def select_timeslot(self, value: datetime | None, day: date | None = None) -> None:
        """Select a slot; ``day`` is its date in the booker's zone when known."""
        self.selected_timeslot = value
        if value is not None:
            self.selected_date = day or value.date()

    def select_duration(self, value: int | None) -> None:
        self.selected_duration = value

    def set_recurring_event_count(self, value: int | None) -> None:
        self.recurring_event_count = value

    def set_seated_event_data(self, data: SeatedEventData) -> None:
        self.seated_event_data = data

    def clear_seat_booking(self) -> None:
        self.seated_event_data = self.seated_event_data.model_copy(
            update={"booking_uid": None, "attendees": None}
        )

    def set_verified_email(self, email: str | None) -> None:
        self.verified_email = email

    def set_form_values(self, values: dict[str, Any]) -> None:
        self.form_values = dict(values)

    def set_instant_expiry(self, expires: datetime | None) -> None:
        self.instant_expiry = expires


class BookingForm(BaseModel):
    """Booking form values and their errors.

    ``global_error`` holds the one failure that is not attributable to a
    field (e.g. missing event data); it is never a key of ``responses``.
    """

    responses: dict[str, Any] = Field(default_factory=dict)
    field_errors: dict[str, str] = {}
    global_error: Optional[str] = None

    def set_response(self, name: str, value: Any) -> None:
        self.responses[name] = value

    def update_responses(self, values: dict[str, Any]) -> None:
        self.responses.update(values)

    def set_global_error(self, message_key: str) -> None:
        self.global_error = message_key

    def set_field_errors(self, errors: dict[str, str]) -> None:
        self.field_errors = dict(errors)

    def clear_errors(self) -> None:
        self.field_errors = {}
        self.global_error = None

    def get(self, name: str, default: Any = None) -> Any:
        return self.responses.get(name, default)
