"""Instant-booking poller.

After an instant booking is created the booker waits for a host to accept
it. The poller asks the backend for the booking's meeting location at a
fixed interval until one of three things happens:

  1. A video-call URL shows up -> navigate there (resolved)
  2. The token expiry passes   -> stop for good (expired)
  3. The session goes away     -> cancel()

A response that arrives after the expiry is discarded, even if it carries
a usable URL.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import ValidationError

from booker.backends.base import BookingBackend
from booker.config import settings
from booker.errors import (
    ERROR_INSTANT_MEETING_EXPIRED,
    ERROR_SOMETHING_WENT_WRONG,
    PollPayloadError,
)
from booker.models.booking import BookingMetadata
from booker.surface import BookerSurface

log = logging.getLogger("booker.poller")


class PollStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    RESOLVED = "resolved"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


def video_call_url(payload: Any) -> str | None:
    """Extract the meeting URL from a location lookup payload.

    Raises:
        PollPayloadError: the booking metadata does not have the expected shape.
    """
    if not isinstance(payload, dict):
        raise PollPayloadError(f"Unexpected payload type {type(payload).__name__}")
    booking = payload.get("booking") or {}
    if not isinstance(booking, dict):
        raise PollPayloadError("Booking is not an object")
    try:
        metadata = BookingMetadata.model_validate(booking.get("metadata") or {})
    except ValidationError as exc:
        raise PollPayloadError(str(exc)) from exc
    return metadata.video_call_url or None


class InstantBookingPoller:
    """Polls one instant booking until it resolves, expires or is cancelled."""

    def __init__(
        self,
        backend: BookingBackend,
        surface: BookerSurface,
        clock: Callable[[], datetime] | None = None,
        interval_seconds: float | None = None,
        emit: Optional[Callable[[str, dict], None]] = None,
    ) -> None:
        self._backend = backend
        self._surface = surface
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._interval = interval_seconds or settings.instant_poll_interval_seconds
        self._emit = emit

        self._task: asyncio.Task | None = None
        self._status = PollStatus.IDLE
        self._booking_id: int | None = None
        self._expires_at: datetime | None = None
        self._expired = False
        self.resolved_url: str | None = None
        self.ticks = 0

    # ── Public API ────────────────────────────────────────────

    @property
    def status(self) -> PollStatus:
        return self._status

    @property
    def booking_id(self) -> int | None:
        return self._booking_id

    @property
    def expires_at(self) -> datetime | None:
        return self._expires_at

    @property
    def is_pending(self) -> bool:
        return self._status == PollStatus.PENDING and not self.has_expired

    @property
    def has_expired(self) -> bool:
        """Whether the token has passed its expiry. Never reverts to False."""
        if self._expired:
            return True
        if self._expires_at is not None and self._clock() >= self._expires_at:
            self._expired = True
        return self._expired

    def arm(self, booking_id: int, expires_at: datetime) -> None:
        """Start polling ``booking_id`` until ``expires_at``.

        Re-arming replaces any poll already running.
        """
        self.cancel()
        self._booking_id = booking_id
        self._expires_at = expires_at
        self._expired = False
        self.resolved_url = None
        self.ticks = 0

        if not booking_id or self.has_expired:
            self._finish_expired()
            return

        self._status = PollStatus.PENDING
        self._trace("poll_armed", {"expires": expires_at.isoformat()})
        self._task = asyncio.create_task(self._run(), name=f"instant-poll-{booking_id}")

    def cancel(self) -> None:
        """Stop polling. Safe to call at any time."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            if self._status == PollStatus.PENDING:
                self._status = PollStatus.CANCELLED
                self._trace("poll_cancelled", {})
        self._task = None

    async def wait(self) -> PollStatus:
        """Wait until polling stops and return the final status."""
        task = self._task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        return self._status

    # ── Internal ──────────────────────────────────────────────

    async def _run(self) -> None:
        while True:
            if self.has_expired:
                self._finish_expired()
                return

            payload: Any = None
            fetched = False
            try:
                payload = await self._backend.get_instant_booking_location(self._booking_id)
                fetched = True
            except asyncio.CancelledError:
                raise
            except Exception:
                log.warning("Instant booking %s lookup failed", self._booking_id, exc_info=True)
                self._surface.show_toast(ERROR_SOMETHING_WENT_WRONG, "error")

            self.ticks += 1

            # A late response must never resolve an expired booking.
            if self.has_expired:
                self._finish_expired()
                return

            if fetched and await self._handle_payload(payload):
                return

            remaining = (self._expires_at - self._clock()).total_seconds()
            await asyncio.sleep(max(0.0, min(self._interval, remaining)))

    async def _handle_payload(self, payload: Any) -> bool:
        """Act on one lookup response. Returns True once the booking resolved."""
        try:
            url = video_call_url(payload)
        except PollPayloadError as exc:
            log.warning("Instant booking %s returned malformed metadata: %s", self._booking_id, exc)
            self._surface.show_toast(ERROR_SOMETHING_WENT_WRONG, "error")
            self._trace("poll_tick", {"outcome": "malformed"})
            return False

        if not url:
            self._surface.show_toast(ERROR_SOMETHING_WENT_WRONG, "error")
            self._trace("poll_tick", {"outcome": "waiting"})
            return False

        self.resolved_url = url
        self._status = PollStatus.RESOLVED
        self._trace("poll_resolved", {"url": url})
        log.info("Instant booking %s resolved", self._booking_id)
        await self._surface.navigate(url)
        return True

    def _finish_expired(self) -> None:
        if self._status == PollStatus.EXPIRED:
            return
        self._expired = True
        self._status = PollStatus.EXPIRED
        log.info("Instant booking %s expired", self._booking_id)
        self._trace("poll_expired", {})
        self._surface.show_toast(ERROR_INSTANT_MEETING_EXPIRED, "warning")

    def _trace(self, kind: str, data: dict) -> None:
        if self._emit:
            self._emit("poll", {"event": kind, "booking_id": self._booking_id, **data})
