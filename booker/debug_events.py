"""Per-session trace of booking activity.

A BookerSession can have a DebugBroadcaster attached. The orchestrator,
the instant poller and the verification gate report what they do through
it: phase transitions, submissions, creation results, poll ticks and
verification steps. Admin clients subscribe over WebSocket and receive
every event on their own bounded queue.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import TypedDict

log = logging.getLogger("booker.debug_events")


class DebugEvent(TypedDict):
    type: str          # transition | submit | creation_result | poll | verification
    timestamp: float
    session_id: str
    phase: str         # orchestrator phase when the event was emitted
    data: dict


class DebugBroadcaster:
    """Fans booking events out to subscriber queues and keeps a bounded history."""

    def __init__(self, session_id: str, queue_size: int = 200, history: int = 1000) -> None:
        self._session_id = session_id
        self._queue_size = queue_size
        self._subscribers: list[asyncio.Queue[DebugEvent]] = []
        self._history: deque[DebugEvent] = deque(maxlen=history)

    def subscribe(self) -> asyncio.Queue[DebugEvent]:
        q: asyncio.Queue[DebugEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.append(q)
        log.info("Trace subscriber joined session %s (%d total)",
                 self._session_id, len(self._subscribers))
        return q

    def unsubscribe(self, q: asyncio.Queue[DebugEvent]) -> None:
        if q in self._subscribers:
            self._subscribers.remove(q)
            log.info("Trace subscriber left session %s (%d total)",
                     self._session_id, len(self._subscribers))

    def emit(self, event_type: str, phase: str, data: dict) -> None:
        """Record an event and push it to every subscriber."""
        event: DebugEvent = {
            "type": event_type,
            "timestamp": time.time(),
            "session_id": self._session_id,
            "phase": phase,
            "data": data,
        }
        self._history.append(event)
        for q in self._subscribers:
            if q.full():
                # Slow subscriber: lose its oldest event, never block the booking flow.
                q.get_nowait()
            q.put_nowait(event)

    def events_of(self, event_type: str) -> list[DebugEvent]:
        return [e for e in self._history if e["type"] == event_type]

    @property
    def event_log(self) -> list[DebugEvent]:
        return list(self._history)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


# ── Registry ─────────────────────────────────────────────────────────

_broadcasters: dict[str, DebugBroadcaster] = {}


def get_broadcaster(session_id: str) -> DebugBroadcaster:
    """Return the session's broadcaster, creating it on first use."""
    broadcaster = _broadcasters.get(session_id)
    if broadcaster is None:
        broadcaster = _broadcasters[session_id] = DebugBroadcaster(session_id)
    return broadcaster


def remove_broadcaster(session_id: str) -> None:
    if _broadcasters.pop(session_id, None) is not None:
        log.info("Trace broadcaster removed for session %s", session_id)
