"""Booking field types and their pydantic validation rules."""

from __future__ import annotations

import re
from typing import Annotated, Any, Optional, Union

from pydantic import AfterValidator, AnyHttpUrl, BaseModel, BeforeValidator, ConfigDict, EmailStr, Field
from pydantic_core import PydanticCustomError

from booker.errors import ERROR_FIELD_REQUIRED, ERROR_INVALID_OPTION
from booker.models.event_type import BookingField

FORM_VIEW_BOOKING = "booking"
FORM_VIEW_RESCHEDULE = "reschedule"

ERROR_INVALID_PHONE = "invalid_phone_number"
ERROR_TOO_SHORT = "too_short"
ERROR_TOO_LONG = "too_long"

_PHONE = re.compile(r"^\+?[0-9][0-9 ()\-]{5,19}$")


class NameParts(BaseModel):
    """A name entered as separate first and last name inputs."""

    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")


def get_full_name(name: Any) -> str:
    """Resolve a name response (plain string or first/last parts) to one string."""
    if name is None:
        return ""
    if isinstance(name, str):
        return name.strip()
    if isinstance(name, NameParts):
        parts = [name.first_name, name.last_name]
    elif isinstance(name, dict):
        parts = [name.get("firstName", ""), name.get("lastName", "")]
    else:
        return str(name).strip()
    return " ".join(str(p).strip() for p in parts if p and str(p).strip())


# System fields every booking form carries, in display order.
SYSTEM_FIELDS: list[BookingField] = [
    BookingField(name="name", type="name", label="your_name", required=True),
    BookingField(name="email", type="email", label="email_address", required=True),
    BookingField(name="notes", type="textarea", label="additional_notes"),
    BookingField(name="guests", type="multiemail", label="additional_guests"),
    BookingField(
        name="rescheduleReason",
        type="textarea",
        label="reason_for_reschedule",
        views=[FORM_VIEW_RESCHEDULE],
    ),
]


def with_system_fields(fields: list[BookingField]) -> list[BookingField]:
    """Merge the system fields into an event's custom fields.

    A custom field with a system field's name overrides it.
    """
    custom = {f.name for f in fields}
    return [f for f in SYSTEM_FIELDS if f.name not in custom] + list(fields)


def applies_to_view(field: BookingField, view: str) -> bool:
    """Whether ``field`` is validated in ``view``."""
    if field.views and view not in field.views:
        return False
    if view == FORM_VIEW_RESCHEDULE and not field.editable_on_reschedule:
        return False
    return True


# ── Validators ────────────────────────────────────────────────────


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _blank_check(required: bool):
    def check(value: Any) -> Any:
        if _is_blank(value):
            if required:
                raise PydanticCustomError(ERROR_FIELD_REQUIRED, "This field is required")
            return None
        return value

    return check


def _required_name(value: Any) -> Any:
    if value is not None and not get_full_name(value):
        raise PydanticCustomError(ERROR_FIELD_REQUIRED, "This field is required")
    return value


def _must_be_true(value: Any) -> Any:
    if value is False:
        raise PydanticCustomError(ERROR_FIELD_REQUIRED, "This field is required")
    return value


def _phone(value: Any) -> Any:
    if value is not None and not _PHONE.match(value.strip()):
        raise PydanticCustomError(ERROR_INVALID_PHONE, "Invalid phone number")
    return value


def _length(field: BookingField):
    def check(value: Any) -> Any:
        if value is None:
            return value
        if field.min_length is not None and len(value) < field.min_length:
            raise PydanticCustomError(ERROR_TOO_SHORT, "Value is too short")
        if field.max_length is not None and len(value) > field.max_length:
            raise PydanticCustomError(ERROR_TOO_LONG, "Value is too long")
        return value

    return check


def _one_of(field: BookingField):
    allowed = {o.value for o in field.options}

    def check(value: Any) -> Any:
        if value is None or not allowed:
            return value
        values = value if isinstance(value, list) else [value]
        if any(v not in allowed for v in values):
            raise PydanticCustomError(ERROR_INVALID_OPTION, "Value is not one of the options")
        return value

    return check


def annotation_for(field: BookingField, required: bool) -> Any:
    """Build the pydantic annotation that validates one field's response."""
    base: Any
    after: list[Any] = []

    if field.type == "name":
        base = Union[str, NameParts]
        if required:
            after.append(AfterValidator(_required_name))
    elif field.type == "email":
        base = EmailStr
    elif field.type == "multiemail":
        base = list[EmailStr]
    elif field.type == "phone":
        base = str
        after.append(AfterValidator(_phone))
    elif field.type == "number":
        base = float
    elif field.type == "boolean":
        base = bool
        if required:
            after.append(AfterValidator(_must_be_true))
    elif field.type in ("select", "radio"):
        base = str
        after.append(AfterValidator(_one_of(field)))
    elif field.type in ("multiselect", "checkbox"):
        base = list[str]
        after.append(AfterValidator(_one_of(field)))
    elif field.type == "url":
        base = AnyHttpUrl
    else:  # text, textarea, address and unknown custom types
        base = str
        after.append(AfterValidator(_length(field)))

    return Annotated[(Optional[base], BeforeValidator(_blank_check(required)), *after)]
