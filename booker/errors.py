"""Booking-flow exceptions and the message keys shown to the booker.

Message keys are resolved to text by the presentation layer; the engine
never carries localized strings.
"""

ERROR_BOOKING_EVENT = "error_booking_event"
ERROR_SOMETHING_WENT_WRONG = "something_went_wrong_on_our_end"
ERROR_BOOKING_FAILED = "booking_failed"
ERROR_INSTANT_MEETING_EXPIRED = "instant_meeting_expired"
ERROR_VERIFICATION_CODE_INVALID = "verification_code_invalid"
ERROR_FIELD_REQUIRED = "error_required_field"
ERROR_INVALID_EMAIL = "email_validation_error"
ERROR_INVALID_OPTION = "invalid_option"
ERROR_INVALID_NUMBER = "invalid_number"


class BookerError(Exception):
    """Base exception for booking flow errors."""

    message_key = ERROR_SOMETHING_WENT_WRONG


class PreconditionError(BookerError):
    """Raised when a booking cannot start: no event data or no selected slot."""

    message_key = ERROR_BOOKING_EVENT


class FormValidationError(BookerError):
    """Raised when booking responses fail validation.

    ``errors`` maps field name to message key.
    """

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        super().__init__(", ".join(f"{k}: {v}" for k, v in self.errors.items()))


class BookingCreationError(BookerError):
    """Raised when the booking backend rejects a creation call or is unreachable."""

    message_key = ERROR_BOOKING_FAILED

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class MalformedBookingResultError(BookingCreationError):
    """Raised when a creation call succeeds but returns no usable identifier."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class SlotUnavailableError(BookingCreationError):
    """Raised when a slot no longer has capacity for the requested booking."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=409)


class PollPayloadError(BookerError):
    """Raised when an instant-booking lookup returns malformed metadata."""


class InstantBookingExpiredError(BookerError):
    """Raised when an instant-booking token has passed its expiry."""

    message_key = ERROR_INSTANT_MEETING_EXPIRED


class VerificationError(BookerError):
    """Raised when the verification service cannot send or check a code."""


class AvailabilityError(BookerError):
    """Raised when the availability source cannot be queried."""
