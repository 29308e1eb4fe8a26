"""Build the validator for a booking form's ``responses`` map.

The validator is rebuilt whenever the event type or the form view changes.
Unknown response keys are let through untouched so that an older client
with a different field set is never blocked from booking.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from booker.errors import (
    ERROR_FIELD_REQUIRED,
    ERROR_INVALID_EMAIL,
    ERROR_INVALID_NUMBER,
    FormValidationError,
)
from booker.forms.fields import (
    FORM_VIEW_BOOKING,
    applies_to_view,
    annotation_for,
    with_system_fields,
)
from booker.models.event_type import BookingField, EventType

log = logging.getLogger("booker.forms")

# An async check receives the field value and all responses; it returns an
# error message key, or None when the value is acceptable.
AsyncFieldCheck = Callable[[Any, dict[str, Any]], Awaitable[Optional[str]]]

_TYPE_ERRORS = {
    "email": ERROR_INVALID_EMAIL,
    "multiemail": ERROR_INVALID_EMAIL,
    "number": ERROR_INVALID_NUMBER,
}


class _PermissiveResponses(BaseModel):
    model_config = ConfigDict(extra="allow")


@dataclass
class ValidationResult:
    values: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise FormValidationError(self.errors)


class ResponsesValidator:
    """Validates a ``responses`` map: a pydantic pass, then async field checks."""

    def __init__(
        self,
        model: type[BaseModel],
        fields: list[BookingField] | None = None,
        checks: dict[str, AsyncFieldCheck] | None = None,
    ) -> None:
        self._model = model
        self._fields = {f.name: f for f in fields or []}
        self._checks = dict(checks or {})

    @property
    def field_names(self) -> list[str]:
        return list(self._fields)

    async def validate(self, responses: dict[str, Any] | None) -> ValidationResult:
        responses = dict(responses or {})
        try:
            parsed = self._model.model_validate(responses)
        except ValidationError as exc:
            errors = self._collect_errors(exc)
            # Keep the raw values so the form can be redisplayed as entered.
            return ValidationResult(values=responses, errors=errors)

        values = parsed.model_dump(mode="json", by_alias=True, exclude_unset=True)
        errors = await self._run_checks(values)
        return ValidationResult(values=values, errors=errors)

    def _collect_errors(self, exc: ValidationError) -> dict[str, str]:
        errors: dict[str, str] = {}
        for err in exc.errors():
            if not err.get("loc"):
                continue
            name = str(err["loc"][0])
            if name in errors:
                continue
            errors[name] = self._message_key(name, err["type"])
        return errors

    def _message_key(self, name: str, error_type: str) -> str:
        if error_type == "missing":
            return ERROR_FIELD_REQUIRED
        booking_field = self._fields.get(name)
        if booking_field is not None and booking_field.type in _TYPE_ERRORS:
            if error_type != ERROR_FIELD_REQUIRED:
                return _TYPE_ERRORS[booking_field.type]
        return error_type

    async def _run_checks(self, values: dict[str, Any]) -> dict[str, str]:
        pending = [
            (name, check) for name, check in self._checks.items()
            if values.get(name) is not None
        ]
        if not pending:
            return {}
        outcomes = await asyncio.gather(
            *(check(values[name], values) for name, check in pending)
        )
        errors = {name: msg for (name, _), msg in zip(pending, outcomes) if msg}
        if errors:
            log.info("Async field checks failed: %s", sorted(errors))
        return errors


def build_responses_validator(
    event_type: EventType | None,
    view: str = FORM_VIEW_BOOKING,
    checks: dict[str, AsyncFieldCheck] | None = None,
) -> ResponsesValidator:
    """Build the validator for ``event_type``'s booking fields in ``view``.

    Until the event type is loaded the validator accepts an empty map (and
    any other keys), so the form is never blocked on a pending load.
    """
    if event_type is None:
        return ResponsesValidator(_PermissiveResponses)

    applicable = [
        f for f in with_system_fields(event_type.booking_fields)
        if applies_to_view(f, view)
    ]

    definitions: dict[str, Any] = {}
    for index, booking_field in enumerate(applicable):
        required = booking_field.required and not booking_field.hidden
        default = ... if required else None
        # Internal names avoid clashes with BaseModel attributes; aliases carry the real names.
        definitions[f"field_{index}"] = (
            annotation_for(booking_field, required),
            Field(default=default, alias=booking_field.name),
        )

    model = create_model(
        f"Responses_{event_type.slug.replace('-', '_')}_{view}",
        __config__=ConfigDict(extra="allow", populate_by_name=False),
        **definitions,
    )
    active_checks = {
        name: check for name, check in (checks or {}).items()
        if any(f.name == name for f in applicable)
    }
    return ResponsesValidator(model, applicable, active_checks)
