"""
Integration tests for the room display HTTP API.

Tests the FastAPI routes with a scripted data source and a frozen clock:
- /room-calendar wire format and error status
- /api/status occupancy payload and stale labelling
- /api/agenda day bucketing
- /api/refresh, /healthz and the wallboard page
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from room_display.config import load_settings
from room_display.main import create_app
from room_display.models import FetchOk
from tests.conftest import DAY, StaticSource, at, failure, make_event

NEXT_DAY = DAY + timedelta(days=1)
EVENTS = [
    make_event("c", at("13:00"), at("14:00")),
    make_event("a", at("10:00"), at("10:30")),
    make_event("d", at("09:00", NEXT_DAY), at("10:00", NEXT_DAY)),
    make_event("b", at("10:30"), at("11:00")),
]


@pytest.fixture
def make_client(fixture_settings, clock):
    clients = []

    def factory(source, settings=None):
        app = create_app(settings or fixture_settings, source=source, clock=clock)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def test_client(make_client):
    return make_client(StaticSource(FetchOk(events=EVENTS)))


# ─────────────────────────────────────────────────────────────────────────────
# /room-calendar
# ─────────────────────────────────────────────────────────────────────────────


class TestRoomCalendar:
    def test_returns_events_in_provider_shape(self, test_client):
        response = test_client.get("/room-calendar")

        assert response.status_code == 200
        data = response.json()
        assert [e["id"] for e in data] == ["a", "b", "c", "d"]
        first = data[0]
        assert first["subject"] == "Meeting a"
        assert first["organizer"] == {"emailAddress": {"name": "Organizer a"}}
        assert first["start"] == {"dateTime": "2026-03-02T10:00:00"}
        assert first["end"] == {"dateTime": "2026-03-02T10:30:00"}

    def test_failure_is_explicit_error_status(self, make_client):
        client = make_client(StaticSource(failure("auth", "token request rejected (401)")))

        response = client.get("/room-calendar")

        assert response.status_code == 503
        assert response.json() == {
            "error": "Calendar data unavailable",
            "kind": "auth",
            "message": "token request rejected (401)",
        }


# ─────────────────────────────────────────────────────────────────────────────
# /api/status
# ─────────────────────────────────────────────────────────────────────────────


class TestStatusEndpoint:
    def test_back_to_back_boundary(self, test_client):
        """At 10:30 meeting 'a' has ended and 'b' has begun."""
        data = test_client.get("/api/status").json()

        assert data["roomName"] == "Board Room"
        assert data["status"] == "Occupied"
        assert data["current"]["id"] == "b"
        assert data["current"]["endIso"] == "2026-03-02T11:00:00Z"
        assert [e["id"] for e in data["upcoming"]] == ["c", "d"]
        assert data["nextChangeIso"] == "2026-03-02T11:00:00Z"
        assert data["generatedAt"] == "2026-03-02T10:30:00Z"
        assert data["fetchedAt"] == "2026-03-02T10:30:00Z"
        assert data["stale"] is False
        assert data["lastError"] is None
        assert data["refreshSeconds"] == 60

    def test_follows_the_clock(self, test_client, clock):
        clock.advance(minutes=45)

        data = test_client.get("/api/status").json()

        assert data["status"] == "Free"
        assert data["current"] is None
        assert data["nextChangeIso"] == "2026-03-02T13:00:00Z"

    def test_no_data_reports_error_without_fetched_at(self, make_client):
        client = make_client(StaticSource(failure("transport", "calendar query failed: no route to host")))

        response = client.get("/api/status")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "Free"
        assert data["fetchedAt"] is None
        assert data["stale"] is False
        assert data["lastError"].startswith("TRANSPORT_ERROR")

    def test_failed_refresh_labels_old_data_stale(self, make_client):
        client = make_client(StaticSource(FetchOk(events=EVENTS), failure()))

        refresh = client.post("/api/refresh").json()
        data = client.get("/api/status").json()

        assert refresh["ok"] is False
        assert refresh["lastError"].startswith("PROVIDER_ERROR")
        assert data["stale"] is True
        assert data["current"]["id"] == "b"
        assert data["lastError"].startswith("PROVIDER_ERROR")
        assert client.get("/room-calendar").status_code == 503


# ─────────────────────────────────────────────────────────────────────────────
# /api/agenda
# ─────────────────────────────────────────────────────────────────────────────


class TestAgendaEndpoint:
    def test_today_excludes_current_meeting(self, test_client):
        data = test_client.get("/api/agenda").json()

        assert data["date"] == "2026-03-02"
        assert [e["id"] for e in data["items"]] == ["a", "c"]
        assert data["days"][0] == "2026-03-02"
        assert len(data["days"]) == 7

    def test_other_day(self, test_client):
        data = test_client.get("/api/agenda", params={"date": "2026-03-03"}).json()

        assert [e["id"] for e in data["items"]] == ["d"]

    def test_invalid_date(self, test_client):
        response = test_client.get("/api/agenda", params={"date": "next tuesday"})

        assert response.status_code == 422


# ─────────────────────────────────────────────────────────────────────────────
# Misc
# ─────────────────────────────────────────────────────────────────────────────


class TestMiscEndpoints:
    def test_refresh_success(self, test_client):
        assert test_client.post("/api/refresh").json() == {"ok": True, "lastError": None}

    def test_refresh_while_fetch_running(self, test_client, monkeypatch):
        async def busy():
            return None

        monkeypatch.setattr(test_client.app.state.monitor, "refresh_if_idle", busy)

        assert test_client.post("/api/refresh").json() == {"ok": False, "lastError": "refresh already in progress"}

    def test_healthz(self, test_client):
        data = test_client.get("/healthz").json()

        assert data["ok"] is True
        assert data["time"].endswith("Z")

    def test_wallboard_page(self, test_client):
        response = test_client.get("/")

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert "<h1>Board Room</h1>" in response.text
        assert "/api/status" in response.text
        assert "{css_vars}" not in response.text

    def test_room_name_is_escaped(self, make_client):
        settings = load_settings(data_source="fixture", room_name="<Lab & Co>")
        client = make_client(StaticSource(), settings=settings)

        assert "<h1>&lt;Lab &amp; Co&gt;</h1>" in client.get("/").text
