"""Pydantic models describing the event type a booking is made against."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Frequency(str, Enum):
    YEARLY = "yearly"
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    DAILY = "daily"


class RecurringEvent(BaseModel):
    """Recurrence policy: how often, how far apart, and the maximum count."""

    model_config = ConfigDict(frozen=True)

    freq: Frequency
    interval: int = Field(default=1, ge=1)
    count: int = Field(default=1, ge=1)


class FieldOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str
    label: str = ""


class BookingField(BaseModel):
    """One custom field on the booking form.

    ``views`` lists the form views the field applies to (empty means all).
    Hidden fields are collected when present but never required.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "text"
    label: str = ""
    required: bool = False
    hidden: bool = False
    views: list[str] = []
    editable_on_reschedule: bool = True
    options: list[FieldOption] = []
    min_length: Optional[int] = None
    max_length: Optional[int] = None


class EventType(BaseModel):
    """Read-only descriptor of a bookable event, loaded once per session."""

    model_config = ConfigDict(frozen=True)

    id: int
    slug: str
    title: str = ""
    length: int = Field(default=30, ge=1)       # default duration, minutes
    multiple_duration: list[int] = []          # allowed durations, minutes
    is_dynamic: bool = False
    recurring_event: Optional[RecurringEvent] = None

    seats_per_time_slot: Optional[int] = None
    seats_show_availability_count: bool = True

    booking_fields: list[BookingField] = []
    requires_booker_email_verification: bool = False

    success_redirect_url: str = ""
    forward_params_success_redirect: bool = True
    is_instant_event: bool = False

    price: int = 0                             # minor currency units; 0 means free
    currency: str = "usd"

    @property
    def has_seats(self) -> bool:
        return bool(self.seats_per_time_slot)

    @property
    def requires_payment(self) -> bool:
        return self.price > 0

    def is_allowed_duration(self, duration: int | None) -> bool:
        return bool(duration) and duration in self.multiple_duration
