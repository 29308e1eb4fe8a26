from .base import BookingBackend, VerificationProvider
from .http import HttpAvailability, HttpBookingBackend, HttpVerificationProvider
from .memory import InMemoryBookingBackend, InMemoryVerificationProvider

__all__ = [
    "BookingBackend",
    "HttpAvailability",
    "HttpBookingBackend",
    "HttpVerificationProvider",
    "InMemoryBookingBackend",
    "InMemoryVerificationProvider",
    "VerificationProvider",
]
