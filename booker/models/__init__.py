"""Data models for the booking layer."""

from .booking import (
    BookingMetadata,
    BookingRequest,
    BookingResult,
    InstantBookingResult,
    PaymentHandoff,
    PriorBooking,
    RecurringBookingResult,
    RecurringOccurrence,
    RedirectInstruction,
    SingleBookingResult,
    SuccessQuery,
)
from .event_type import BookingField, EventType, FieldOption, Frequency, RecurringEvent
from .session_state import BookerState, BookingForm, SeatedEventData

__all__ = [
    "BookerState",
    "BookingField",
    "BookingForm",
    "BookingMetadata",
    "BookingRequest",
    "BookingResult",
    "EventType",
    "FieldOption",
    "Frequency",
    "InstantBookingResult",
    "PaymentHandoff",
    "PriorBooking",
    "RecurringBookingResult",
    "RecurringEvent",
    "RecurringOccurrence",
    "RedirectInstruction",
    "SeatedEventData",
    "SingleBookingResult",
    "SuccessQuery",
]
