"""HTTP clients for the booking API.

One ``httpx.AsyncClient`` is opened per call. Every request and response
body uses the API's camelCase field names; conversion to the engine's
models happens here and nowhere else.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

import httpx
from pydantic import ValidationError

from booker.availability.base import AvailabilitySource, Schedule, Slot
from booker.backends.base import BookingBackend, VerificationProvider
from booker.config import settings
from booker.errors import (
    AvailabilityError,
    BookingCreationError,
    MalformedBookingResultError,
    VerificationError,
)
from booker.models.booking import (
    BookingRequest,
    InstantBookingResult,
    RecurringBookingResult,
    RecurringOccurrence,
    SingleBookingResult,
)
from booker.models.event_type import EventType
from booker.privacy import redact_pii

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Pull a human-readable message out of an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


def request_payload(request: BookingRequest, occurrence_count: int | None = None) -> dict[str, Any]:
    """Serialize a BookingRequest into the API's mutation input."""
    payload: dict[str, Any] = {
        "eventTypeId": request.event_type_id,
        "eventTypeSlug": request.event_type_slug,
        "start": request.start.isoformat(),
        "end": request.end.isoformat(),
        "duration": request.duration,
        "timeZone": request.time_zone,
        "language": request.language,
        "responses": request.responses,
        "user": request.username,
        "metadata": request.metadata,
    }
    if request.reschedule_uid:
        payload["rescheduleUid"] = request.reschedule_uid
    if request.booking_uid:
        payload["bookingUid"] = request.booking_uid
    if request.hashed_link:
        payload["hashedLink"] = request.hashed_link
    if occurrence_count is not None:
        payload["recurringEventId"] = request.recurring_event_id
        payload["recurringCount"] = occurrence_count
        payload["allRecurringDates"] = [d.isoformat() for d in request.all_recurring_dates]
    return payload


class _ApiClient:
    """Shared request plumbing for the booking API clients."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.api_base_url).rstrip("/")
        self._timeout = timeout or settings.api_timeout_seconds
        self._transport = transport

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        async with httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            resp = await client.request(method, path, **kwargs)
            resp.raise_for_status()
            if not resp.content:
                return None
            return resp.json()


class HttpBookingBackend(_ApiClient, BookingBackend):
    """BookingBackend that talks to the booking REST API."""

    async def _create(self, path: str, payload: dict[str, Any]) -> Any:
        try:
            return await self._send("POST", path, json=payload)
        except httpx.HTTPStatusError as exc:
            message = _error_message(exc.response)
            logger.warning(
                "Booking API rejected %s (status %s): %s",
                path, exc.response.status_code, message,
            )
            raise BookingCreationError(message, status_code=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            logger.exception("Booking API unreachable for %s", path)
            raise BookingCreationError(f"Booking API unreachable: {exc}") from exc
        except ValueError as exc:
            raise MalformedBookingResultError(f"Invalid JSON from {path}") from exc

    async def create_booking(self, request: BookingRequest) -> SingleBookingResult:
        data = await self._create("/bookings", request_payload(request))
        if not isinstance(data, dict):
            return SingleBookingResult()
        return SingleBookingResult(
            uid=data.get("uid"),
            payment_uid=data.get("paymentUid"),
            seat_reference_uid=data.get("seatReferenceUid"),
            start_time=data.get("startTime"),
        )

    async def create_recurring_booking(
        self, request: BookingRequest, occurrence_count: int
    ) -> RecurringBookingResult:
        data = await self._create(
            "/bookings/recurring", request_payload(request, occurrence_count)
        )
        if not isinstance(data, list):
            return RecurringBookingResult()
        return RecurringBookingResult(
            occurrences=[
                RecurringOccurrence(uid=item.get("uid"), start_time=item.get("startTime"))
                for item in data
                if isinstance(item, dict)
            ]
        )

    async def create_instant_booking(self, request: BookingRequest) -> InstantBookingResult:
        data = await self._create("/bookings/instant", request_payload(request))
        try:
            return InstantBookingResult(
                booking_id=(data or {}).get("bookingId"),
                expires=(data or {}).get("expires"),
            )
        except (ValidationError, AttributeError) as exc:
            raise MalformedBookingResultError(
                "Instant booking response has no usable bookingId/expires"
            ) from exc

    async def get_instant_booking_location(self, booking_id: int) -> dict[str, Any]:
        data = await self._send("GET", f"/bookings/{booking_id}/instant-location")
        return data if isinstance(data, dict) else {}


class HttpAvailability(_ApiClient, AvailabilitySource):
    """AvailabilitySource backed by the ``/slots`` endpoint."""

    async def get_slots(
        self,
        event_type: EventType,
        start: datetime,
        end: datetime,
        duration_minutes: int,
        time_zone: str = "UTC",
    ) -> Schedule:
        params = {
            "eventTypeId": event_type.id,
            "startTime": start.isoformat(),
            "endTime": end.isoformat(),
            "duration": duration_minutes,
            "timeZone": time_zone,
        }
        try:
            data = await self._send("GET", "/slots", params=params)
        except httpx.HTTPError as exc:
            logger.exception("Failed to query availability for event type %s", event_type.id)
            raise AvailabilityError(str(exc)) from exc

        schedule: Schedule = {}
        for day, slots in ((data or {}).get("slots") or {}).items():
            parsed = []
            for raw in slots:
                seats = raw.get("seatsRemaining")
                if seats is None and event_type.has_seats and "attendees" in raw:
                    seats = event_type.seats_per_time_slot - int(raw["attendees"])
                if not event_type.seats_show_availability_count:
                    seats = None
                parsed.append(Slot(start=datetime.fromisoformat(raw["time"]), seats_remaining=seats))
            schedule[date.fromisoformat(day)] = sorted(parsed, key=lambda s: s.start)
        return schedule


class HttpVerificationProvider(_ApiClient, VerificationProvider):
    """VerificationProvider backed by the ``/verification`` endpoints."""

    async def send_code(self, email: str, name: str = "") -> None:
        try:
            await self._send("POST", "/verification/send", json={"email": email, "name": name})
        except httpx.HTTPError as exc:
            logger.exception("Verification API could not send a code to %s", redact_pii(email))
            raise VerificationError(f"Verification API failed: {exc}") from exc
        logger.info("Verification code requested for %s", redact_pii(email))

    async def verify_code(self, email: str, code: str) -> bool:
        try:
            data = await self._send(
                "POST", "/verification/verify", json={"email": email, "code": code}
            )
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code < 500:
                return False
            logger.exception("Verification API failed checking %s", redact_pii(email))
            raise VerificationError(_error_message(exc.response)) from exc
        except httpx.HTTPError as exc:
            logger.exception("Verification API unreachable checking %s", redact_pii(email))
            raise VerificationError(f"Verification API unreachable: {exc}") from exc
        return bool((data or {}).get("verified"))
