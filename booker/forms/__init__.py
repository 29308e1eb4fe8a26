"""Booking form schema: field rules and the responses validator."""

from .fields import (
    FORM_VIEW_BOOKING,
    FORM_VIEW_RESCHEDULE,
    NameParts,
    SYSTEM_FIELDS,
    applies_to_view,
    get_full_name,
    with_system_fields,
)
from .schema import AsyncFieldCheck, ResponsesValidator, ValidationResult, build_responses_validator

__all__ = [
    "AsyncFieldCheck",
    "FORM_VIEW_BOOKING",
    "FORM_VIEW_RESCHEDULE",
    "NameParts",
    "ResponsesValidator",
    "SYSTEM_FIELDS",
    "ValidationResult",
    "applies_to_view",
    "build_responses_validator",
    "get_full_name",
    "with_system_fields",
]
