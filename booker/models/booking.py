"""Pydantic models for booking requests, creation results and success hand-offs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class BookingRequest(BaseModel):
    """Snapshot of everything needed to create a booking.

    Built immediately before submission and consumed once by the orchestrator.
    ``booking_uid`` references either the booking being rescheduled or the
    seated booking being joined; it never asks for a new allocation.
    """

    model_config = ConfigDict(frozen=True)

    event_type_id: int
    event_type_slug: str
    start: datetime
    end: datetime
    duration: int
    time_zone: str
    language: str
    responses: dict[str, Any] = {}
    reschedule_uid: Optional[str] = None
    booking_uid: Optional[str] = None
    username: str = ""
    metadata: dict[str, str] = {}
    hashed_link: Optional[str] = None

    # Recurring series only
    recurring_event_id: Optional[str] = None
    all_recurring_dates: list[datetime] = []

    @property
    def is_seat_booking(self) -> bool:
        return bool(self.booking_uid) and not self.reschedule_uid


class SingleBookingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    uid: Optional[str] = None
    payment_uid: Optional[str] = None
    seat_reference_uid: Optional[str] = None
    start_time: Optional[datetime] = None


class RecurringOccurrence(BaseModel):
    model_config = ConfigDict(frozen=True)

    uid: Optional[str] = None
    start_time: Optional[datetime] = None


class RecurringBookingResult(BaseModel):
    """Ordered occurrences of a recurring series; the first is canonical."""

    model_config = ConfigDict(frozen=True)

    occurrences: list[RecurringOccurrence] = []

    @property
    def canonical(self) -> RecurringOccurrence | None:
        return self.occurrences[0] if self.occurrences else None


class InstantBookingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    booking_id: int
    expires: datetime


BookingResult = Union[SingleBookingResult, RecurringBookingResult, InstantBookingResult]


class BookingMetadata(BaseModel):
    """Metadata attached to a created booking, read while polling instant bookings."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    video_call_url: Optional[str] = Field(default=None, alias="videoCallUrl")


class PriorBooking(BaseModel):
    """The booking being rescheduled, as loaded when the session starts."""

    uid: str
    start_time: datetime
    responses: dict[str, Any] = {}


class SuccessQuery(BaseModel):
    """Query parameters carried by the success redirect."""

    is_success_booking_page: bool = True
    email: str = ""
    event_type_slug: str = ""
    seat_reference_uid: Optional[str] = None
    all_remaining_bookings: Optional[bool] = None
    former_time: Optional[str] = None

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {
            "isSuccessBookingPage": "true" if self.is_success_booking_page else "false",
            "email": self.email,
            "eventTypeSlug": self.event_type_slug,
        }
        if self.seat_reference_uid:
            params["seatReferenceUid"] = self.seat_reference_uid
        if self.all_remaining_bookings:
            params["allRemainingBookings"] = "true"
        if self.former_time:
            params["formerTime"] = self.former_time
        return params


class RedirectInstruction(BaseModel):
    """Hand-off to the success-redirect resolver."""

    success_redirect_url: str = ""
    forward_params: bool = True
    query: SuccessQuery
    booking_uid: str


class PaymentHandoff(BaseModel):
    """A created booking that still has to be paid for before it is confirmed."""

    payment_uid: str
    booking_uid: str
    date: datetime
    name: str
    email: str
