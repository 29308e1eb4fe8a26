"""Abstract base classes for the booking backend and email verification.

The booking engine consumes these contracts; it never defines how a
booking is persisted or how a verification code is delivered.
"""

from abc import ABC, abstractmethod
from typing import Any

from booker.models.booking import (
    BookingRequest,
    InstantBookingResult,
    RecurringBookingResult,
    SingleBookingResult,
)
from booker.models.event_type import EventType


class BookingBackend(ABC):
    """Abstract booking backend.

    Subclasses must implement the three creation calls and the
    instant-booking location lookup.
    """

    @abstractmethod
    async def create_booking(self, request: BookingRequest) -> SingleBookingResult:
        """Create one booking (new, rescheduled, or a seat on an existing one).

        Raises:
            BookingCreationError: the backend rejected the request or was
                unreachable.
        """

    @abstractmethod
    async def create_recurring_booking(
        self, request: BookingRequest, occurrence_count: int
    ) -> RecurringBookingResult:
        """Create ``occurrence_count`` bookings of one recurring series.

        ``request.all_recurring_dates`` lists the occurrence starts. The
        result is ordered; its first element is canonical.
        """

    @abstractmethod
    async def create_instant_booking(self, request: BookingRequest) -> InstantBookingResult:
        """Create an instant booking and return its id and token expiry."""

    @abstractmethod
    async def get_instant_booking_location(self, booking_id: int) -> dict[str, Any]:
        """Return the raw ``{"booking": {"metadata": {...}}}`` payload for a booking."""

    def register_event_type(self, event_type: EventType) -> None:
        """Make ``event_type`` bookable. Remote backends own their catalog."""


class VerificationProvider(ABC):
    """Abstract email-code verification service."""

    @abstractmethod
    async def send_code(self, email: str, name: str = "") -> None:
        """Send a verification code to ``email``."""

    @abstractmethod
    async def verify_code(self, email: str, code: str) -> bool:
        """Return True if ``code`` is the current code for ``email``."""
