"""FastAPI application: HTTP + WebSocket endpoints for booking sessions.

Endpoints:

  GET    /health                               Health check
  POST   /api/sessions                         Start a booking session
  GET    /api/sessions/{id}                    Session detail
  DELETE /api/sessions/{id}                    Tear a session down
  GET    /api/sessions/{id}/schedule           Availability for one month
  POST   /api/sessions/{id}/slot               Select a slot
  DELETE /api/sessions/{id}/slot               Go back to slot selection
  PUT    /api/sessions/{id}/responses          Merge booking form responses
  POST   /api/sessions/{id}/book               Confirm the booking
  POST   /api/sessions/{id}/verify             Submit an email verification code
  POST   /api/sessions/{id}/instant/cancel     Stop waiting for an instant meeting

  GET    /api/admin/sessions                   List sessions            (admin)
  PUT    /api/admin/event-types                Register event types     (admin)
  WS     /api/admin/sessions/{id}/debug        Live trace stream        (admin)
"""

from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Optional

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from booker.auth import authorize_admin_ws, require_admin_token
from booker.availability.base import AvailabilitySource
from booker.availability.memory import InMemoryAvailability
from booker.backends.base import BookingBackend, VerificationProvider
from booker.backends.http import HttpAvailability, HttpBookingBackend, HttpVerificationProvider
from booker.backends.memory import InMemoryBookingBackend, InMemoryVerificationProvider
from booker.config import settings
from booker.debug_events import get_broadcaster, remove_broadcaster
from booker.errors import AvailabilityError, PreconditionError
from booker.models.booking import PriorBooking
from booker.models.event_type import EventType
from booker.session import (
    BookerSession,
    get_active_sessions,
    get_session,
    register_session,
    unregister_session,
)
from booker.url_state import UrlState
from booker.verification import GateResult

log = logging.getLogger("booker.app")

_START_TIME = time.time()


@dataclass
class BookerServices:
    """Collaborators shared by every session of one app instance."""

    backend: BookingBackend
    availability: AvailabilitySource
    verification: VerificationProvider
    event_types: dict[int, EventType] = field(default_factory=dict)
    clock: Optional[Callable[[], datetime]] = None


def demo_event_types() -> list[EventType]:
    return [
        EventType(id=1, slug="intro", title="Intro call", length=30, multiple_duration=[15, 30, 60]),
        EventType(id=2, slug="workshop", title="Workshop", length=60, seats_per_time_slot=5),
        EventType(
            id=3, slug="standup", title="Weekly standup", length=15,
            recurring_event={"freq": "weekly", "interval": 1, "count": 4},
        ),
        EventType(id=4, slug="now", title="Talk now", length=15, is_instant_event=True),
    ]


def build_services() -> BookerServices:
    """Wire the backends selected by BOOKING_BACKEND."""
    event_types = {et.id: et for et in demo_event_types()}
    if settings.booking_backend == "http":
        return BookerServices(
            backend=HttpBookingBackend(),
            availability=HttpAvailability(),
            verification=HttpVerificationProvider(),
            event_types=event_types,
        )
    availability = InMemoryAvailability(host_time_zone=settings.default_time_zone)
    return BookerServices(
        backend=InMemoryBookingBackend(availability, list(event_types.values())),
        availability=availability,
        verification=InMemoryVerificationProvider(),
        event_types=event_types,
    )


# ── Request bodies ───────────────────────────────────────────────


class CreateSessionBody(BaseModel):
    event_type_id: int
    username: str = ""
    query: str = ""
    time_zone: Optional[str] = None
    language: Optional[str] = None
    hashed_link: Optional[str] = None
    booking: Optional[PriorBooking] = None


class SelectSlotBody(BaseModel):
    start: datetime
    duration: Optional[int] = None
    recurring_count: Optional[int] = None
    instant: Optional[bool] = None


class ResponsesBody(BaseModel):
    responses: dict[str, Any]


class VerifyBody(BaseModel):
    code: str


def _gate_payload(result: GateResult, session: BookerSession) -> dict[str, Any]:
    outcome = result.outcome
    return {
        "status": result.status.value,
        "error": result.error,
        "outcome": outcome.to_dict() if outcome is not None else None,
        "session": session.to_dict(detail=True),
    }


def create_app(services: BookerServices | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Slot Booker",
        description="Booking sessions: availability, form validation and booking creation",
        version="0.1.0",
    )
    services = services or build_services()
    app.state.services = services

    def _session_or_404(session_id: str) -> BookerSession:
        session = get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({"status": "ok", "uptime": uptime, "sessions": len(get_active_sessions())})

    # ── Sessions ───────────────────────────────────────────────

    @app.post("/api/sessions", status_code=201)
    async def create_session(body: CreateSessionBody) -> dict:
        event_type = services.event_types.get(body.event_type_id)
        if event_type is None:
            raise HTTPException(status_code=404, detail="Event type not found")

        session = BookerSession(
            backend=services.backend,
            availability=services.availability,
            verification_provider=services.verification,
            clock=services.clock,
        )
        try:
            session.start(
                username=body.username,
                event_slug=event_type.slug,
                url_state=UrlState.from_query_string(body.query),
                time_zone=body.time_zone,
                language=body.language,
                hashed_link=body.hashed_link,
            )
        except (KeyError, ValueError) as exc:
            raise HTTPException(status_code=422, detail=f"Invalid session parameters: {exc}") from exc
        session.load_event(event_type, booking_data=body.booking)

        sid = register_session(session)
        session.attach_broadcaster(get_broadcaster(sid))
        return session.to_dict(detail=True)

    @app.get("/api/sessions/{session_id}")
    async def read_session(session_id: str) -> dict:
        return _session_or_404(session_id).to_dict(detail=True)

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(session_id: str) -> dict:
        session = _session_or_404(session_id)
        session.teardown()
        remove_broadcaster(session_id)
        unregister_session(session_id)
        return {"deleted": True}

    @app.get("/api/sessions/{session_id}/schedule")
    async def read_schedule(session_id: str, month: str) -> dict:
        session = _session_or_404(session_id)
        try:
            first = date.fromisoformat(f"{month}-01")
        except ValueError as exc:
            raise HTTPException(status_code=422, detail="month must be YYYY-MM") from exc
        try:
            schedule = await session.get_schedule(first)
        except AvailabilityError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {
            "time_zone": session.state.time_zone,
            "days": {
                day.isoformat(): [
                    {"start": slot.start.isoformat(), "seats_remaining": slot.seats_remaining}
                    for slot in slots
                ]
                for day, slots in sorted(schedule.items())
            },
        }

    @app.post("/api/sessions/{session_id}/slot")
    async def select_slot(session_id: str, body: SelectSlotBody) -> dict:
        session = _session_or_404(session_id)
        try:
            if body.duration is not None:
                session.select_duration(body.duration)
            if body.recurring_count is not None:
                session.set_recurring_count(body.recurring_count)
            if body.instant is not None:
                session.set_instant_meeting(body.instant)
            slot = await session.select_slot(body.start)
        except PreconditionError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except AvailabilityError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {
            "slot": {"start": slot.start.isoformat(), "seats_remaining": slot.seats_remaining},
            "session": session.to_dict(detail=True),
        }

    @app.delete("/api/sessions/{session_id}/slot")
    async def cancel_slot(session_id: str) -> dict:
        session = _session_or_404(session_id)
        session.cancel_selection()
        return session.to_dict(detail=True)

    @app.put("/api/sessions/{session_id}/responses")
    async def update_responses(session_id: str, body: ResponsesBody) -> dict:
        session = _session_or_404(session_id)
        session.set_responses(body.responses)
        return session.to_dict(detail=True)

    @app.post("/api/sessions/{session_id}/book")
    async def book(session_id: str) -> dict:
        session = _session_or_404(session_id)
        return _gate_payload(await session.book(), session)

    @app.post("/api/sessions/{session_id}/verify")
    async def verify(session_id: str, body: VerifyBody) -> dict:
        session = _session_or_404(session_id)
        return _gate_payload(await session.verify(body.code), session)

    @app.post("/api/sessions/{session_id}/instant/cancel")
    async def cancel_instant(session_id: str) -> dict:
        session = _session_or_404(session_id)
        session.cancel_instant()
        return session.to_dict(detail=True)

    # ── Admin ──────────────────────────────────────────────────

    @app.get("/api/admin/sessions", dependencies=[Depends(require_admin_token)])
    async def list_sessions() -> dict:
        sessions = get_active_sessions()
        return {"sessions": [s.to_dict() for s in sessions.values()], "count": len(sessions)}

    @app.put("/api/admin/event-types", dependencies=[Depends(require_admin_token)])
    async def register_event_types(event_types: list[EventType]) -> dict:
        for event_type in event_types:
            services.event_types[event_type.id] = event_type
            services.backend.register_event_type(event_type)
        log.info("Registered event types: %s", [et.id for et in event_types])
        return {"event_type_ids": sorted(services.event_types)}

    @app.websocket("/api/admin/sessions/{session_id}/debug")
    async def debug_stream(websocket: WebSocket, session_id: str, token: str = "") -> None:
        """Stream a session's trace events as JSON messages."""
        if not await authorize_admin_ws(websocket, token):
            return
        session = get_session(session_id)
        if session is None:
            await websocket.close(code=4004, reason="Session not found")
            return

        await websocket.accept()
        broadcaster = get_broadcaster(session_id)
        session.attach_broadcaster(broadcaster)
        queue = broadcaster.subscribe()
        try:
            while True:
                event = await queue.get()
                await websocket.send_json(event)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            log.warning("Debug stream error for %s: %s", session_id, e)
        finally:
            broadcaster.unsubscribe(queue)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    for warning in settings.validate_startup():
        log.warning(warning)

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "booker.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
