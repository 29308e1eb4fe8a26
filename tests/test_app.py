"""Tests for the FastAPI endpoints, wired to in-memory services with a fixed clock."""

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from conftest import FakeClock

from booker.app import BookerServices, create_app, demo_event_types
from booker.availability import InMemoryAvailability
from booker.backends.memory import InMemoryBookingBackend, InMemoryVerificationProvider
from booker.session import get_session

BOOKER = {"name": "Sam Lee", "email": "sam@example.com"}
SLOT = "2026-11-03T10:00:00+00:00"


class FakeSettings:
    def __init__(self, admin_api_key="", debug=False):
        self.admin_api_key = admin_api_key
        self.debug = debug


@pytest.fixture
def services():
    clock = FakeClock()
    availability = InMemoryAvailability(clock=clock)
    event_types = {et.id: et for et in demo_event_types()}
    return BookerServices(
        backend=InMemoryBookingBackend(availability, list(event_types.values()), clock=clock),
        availability=availability,
        verification=InMemoryVerificationProvider(),
        event_types=event_types,
        clock=clock,
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as c:
        yield c


@pytest.fixture
def admin(monkeypatch):
    monkeypatch.setattr("booker.auth.settings", FakeSettings(admin_api_key="secret"))
    return {"Authorization": "Bearer secret"}


def _start(client, event_type_id=1, **body) -> str:
    resp = client.post("/api/sessions", json={"event_type_id": event_type_id, "username": "jane", **body})
    assert resp.status_code == 201
    return resp.json()["session_id"]


# ── Health and sessions ─────────────────────────────────────────────


class TestSessions:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_create_and_read(self, client):
        sid = _start(client, query="name=Sam")

        detail = client.get(f"/api/sessions/{sid}").json()
        assert detail["booker_phase"] == "selecting_date"
        assert detail["form"]["responses"] == {"name": "Sam"}
        assert detail["url_state"] == {"name": "Sam"}

    def test_unknown_event_type(self, client):
        assert client.post("/api/sessions", json={"event_type_id": 999}).status_code == 404

    def test_unknown_time_zone(self, client):
        resp = client.post("/api/sessions", json={"event_type_id": 1, "time_zone": "Mars/Olympus"})
        assert resp.status_code == 422

    def test_unknown_session(self, client):
        assert client.get("/api/sessions/nope").status_code == 404

    def test_delete(self, client):
        sid = _start(client)
        assert client.delete(f"/api/sessions/{sid}").json() == {"deleted": True}
        assert get_session(sid) is None
        assert client.get(f"/api/sessions/{sid}").status_code == 404


# ── Schedule and slots ──────────────────────────────────────────────


class TestSchedule:
    def test_month(self, client):
        sid = _start(client)
        body = client.get(f"/api/sessions/{sid}/schedule", params={"month": "2026-11"}).json()

        assert body["time_zone"] == "UTC"
        assert body["days"]["2026-11-03"][0] == {"start": "2026-11-03T09:00:00+00:00", "seats_remaining": None}
        assert "2026-11-07" not in body["days"]

    def test_bad_month(self, client):
        sid = _start(client)
        resp = client.get(f"/api/sessions/{sid}/schedule", params={"month": "November"})
        assert resp.status_code == 422

    def test_select_and_cancel_slot(self, client):
        sid = _start(client)
        resp = client.post(f"/api/sessions/{sid}/slot", json={"start": SLOT, "duration": 60})

        assert resp.status_code == 200
        assert resp.json()["session"]["booker_phase"] == "booking"
        assert resp.json()["session"]["state"]["selected_duration"] == 60

        cancelled = client.delete(f"/api/sessions/{sid}/slot").json()
        assert cancelled["booker_phase"] == "selecting_time"

    def test_slot_not_offered(self, client):
        sid = _start(client)
        resp = client.post(f"/api/sessions/{sid}/slot", json={"start": "2026-11-03T03:00:00+00:00"})
        assert resp.status_code == 409

    def test_instant_on_regular_event(self, client):
        sid = _start(client)
        resp = client.post(f"/api/sessions/{sid}/slot", json={"start": SLOT, "instant": True})
        assert resp.status_code == 409


# ── Booking ─────────────────────────────────────────────────────────


class TestBooking:
    def test_book(self, client):
        sid = _start(client)
        client.post(f"/api/sessions/{sid}/slot", json={"start": SLOT})
        client.put(f"/api/sessions/{sid}/responses", json={"responses": BOOKER})

        body = client.post(f"/api/sessions/{sid}/book").json()

        assert body["status"] == "committed"
        assert body["outcome"]["status"] == "succeeded"
        assert body["outcome"]["intent"] == "single"
        assert body["outcome"]["redirect_url"].startswith("/booking/")
        assert body["session"]["surface"]["navigations"] == [body["outcome"]["redirect_url"]]

    def test_invalid_responses(self, client):
        sid = _start(client)
        client.post(f"/api/sessions/{sid}/slot", json={"start": SLOT})
        client.put(f"/api/sessions/{sid}/responses", json={"responses": {"name": "Sam", "email": "nope"}})

        body = client.post(f"/api/sessions/{sid}/book").json()

        assert body["outcome"]["status"] == "invalid"
        assert body["session"]["form"]["field_errors"] == {"email": "email_validation_error"}

    def test_recurring(self, client):
        sid = _start(client, event_type_id=3)
        client.post(f"/api/sessions/{sid}/slot", json={"start": SLOT, "recurring_count": 2})
        client.put(f"/api/sessions/{sid}/responses", json={"responses": BOOKER})

        body = client.post(f"/api/sessions/{sid}/book").json()

        assert body["outcome"]["intent"] == "recurring"
        assert "allRemainingBookings=true" in body["outcome"]["redirect_url"]

    def test_instant_flag_from_link_survives_slot_selection(self, client):
        sid = _start(client, event_type_id=4, query="isInstantMeeting=true")
        selected = client.post(f"/api/sessions/{sid}/slot", json={"start": SLOT}).json()
        assert selected["session"]["state"]["is_instant_meeting"] is True

        client.put(f"/api/sessions/{sid}/responses", json={"responses": BOOKER})
        body = client.post(f"/api/sessions/{sid}/book").json()

        assert body["outcome"]["intent"] == "instant"
        client.post(f"/api/sessions/{sid}/instant/cancel")

    def test_instant_then_cancel(self, client):
        sid = _start(client, event_type_id=4)
        client.post(f"/api/sessions/{sid}/slot", json={"start": SLOT, "instant": True})
        client.put(f"/api/sessions/{sid}/responses", json={"responses": BOOKER})

        body = client.post(f"/api/sessions/{sid}/book").json()
        assert body["outcome"]["intent"] == "instant"
        assert body["session"]["url_state"]["bookingId"]

        cancelled = client.post(f"/api/sessions/{sid}/instant/cancel").json()
        assert cancelled["instant_status"] == "cancelled"
        assert "bookingId" not in cancelled["url_state"]

    def test_newly_registered_event_type_is_bookable(self, client, services, admin):
        event = services.event_types[1].model_copy(update={"id": 21, "slug": "late-addition"})
        client.put("/api/admin/event-types", json=[event.model_dump(mode="json")], headers=admin)

        sid = _start(client, event_type_id=21)
        client.post(f"/api/sessions/{sid}/slot", json={"start": SLOT})
        client.put(f"/api/sessions/{sid}/responses", json={"responses": BOOKER})
        body = client.post(f"/api/sessions/{sid}/book").json()

        assert body["outcome"]["status"] == "succeeded"
        assert body["outcome"]["error"] is None

    def test_verification(self, client, services, admin):
        event = services.event_types[1].model_copy(
            update={"id": 20, "slug": "verified", "requires_booker_email_verification": True}
        )
        resp = client.put("/api/admin/event-types", json=[event.model_dump(mode="json")], headers=admin)
        assert 20 in resp.json()["event_type_ids"]

        sid = _start(client, event_type_id=20)
        client.post(f"/api/sessions/{sid}/slot", json={"start": SLOT})
        client.put(f"/api/sessions/{sid}/responses", json={"responses": BOOKER})

        challenged = client.post(f"/api/sessions/{sid}/book").json()
        assert challenged["status"] == "challenged"
        assert challenged["session"]["verification"]["modal_open"] is True

        wrong = client.post(f"/api/sessions/{sid}/verify", json={"code": "x"}).json()
        assert wrong["status"] == "rejected"
        assert wrong["error"] == "verification_code_invalid"

        code = services.verification.codes["sam@example.com"]
        done = client.post(f"/api/sessions/{sid}/verify", json={"code": code}).json()
        assert done["status"] == "committed"
        assert done["outcome"]["status"] == "succeeded"


# ── Admin ───────────────────────────────────────────────────────────


class TestAdmin:
    def test_list_sessions(self, client, admin):
        sid = _start(client)
        body = client.get("/api/admin/sessions", headers=admin).json()
        assert sid in [s["session_id"] for s in body["sessions"]]

    def test_wrong_token(self, client, admin):
        resp = client.get("/api/admin/sessions", headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 401

    def test_locked_without_key(self, client, monkeypatch):
        monkeypatch.setattr("booker.auth.settings", FakeSettings())
        assert client.get("/api/admin/sessions").status_code == 403

    def test_debug_stream_unknown_session(self, client, admin):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/api/admin/sessions/nope/debug?token=secret"):
                pass
        assert exc_info.value.code == 4004

    def test_debug_stream_wrong_token(self, client, admin):
        sid = _start(client)
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/api/admin/sessions/{sid}/debug?token=wrong"):
                pass
        assert exc_info.value.code == 4001
