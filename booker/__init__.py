"""Booking engine: slot selection, form validation and booking creation for event types."""

__version__ = "0.1.0"
