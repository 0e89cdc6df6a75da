"""Shared test fixtures for the room display tests.

This module provides:
- ``make_event`` for building events from wall-clock times
- a controllable clock
- scripted data sources for driving the monitor and the API
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from room_display.config import load_settings
from room_display.models import Event, FetchErr, FetchOk, FetchResult
from room_display.sources import DataSource


# ─────────────────────────────────────────────────────────────────────────────
# Time helpers
# ─────────────────────────────────────────────────────────────────────────────

DAY = datetime(2026, 3, 2, tzinfo=timezone.utc)


def at(hhmm: str, day: datetime = DAY) -> datetime:
    """Return ``day`` at ``HH:MM`` UTC."""
    hours, minutes = (int(part) for part in hhmm.split(":"))
    return day.replace(hour=hours, minute=minutes)


def make_event(event_id: str, start: datetime, end: datetime, subject: Optional[str] = None) -> Event:
    return Event(
        id=event_id,
        subject=subject if subject is not None else f"Meeting {event_id}",
        organizer_name=f"Organizer {event_id}",
        start=start,
        end=end,
    )


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ─────────────────────────────────────────────────────────────────────────────
# Data sources
# ─────────────────────────────────────────────────────────────────────────────


class StaticSource(DataSource):
    """Returns queued results in order, repeating the last one forever."""

    def __init__(self, *results: FetchResult) -> None:
        self.results: List[FetchResult] = list(results) or [FetchOk(events=[])]
        self.windows = []
        self.closed = False

    async def list_events(self, window_start, window_end) -> FetchResult:
        self.windows.append((window_start, window_end))
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]

    async def aclose(self) -> None:
        self.closed = True


class GatedSource(DataSource):
    """Each call blocks until the test releases its gate, then returns its result."""

    def __init__(self) -> None:
        self.queue = []

    def script(self, result: FetchResult) -> asyncio.Event:
        gate = asyncio.Event()
        self.queue.append((gate, result))
        return gate

    async def list_events(self, window_start, window_end) -> FetchResult:
        gate, result = self.queue.pop(0)
        await gate.wait()
        return result


def failure(kind: str = "provider", message: str = "calendar query failed (503): Service Unavailable") -> FetchErr:
    return FetchErr(kind=kind, message=message)


async def settle() -> None:
    """Let pending tasks run until they block."""
    for _ in range(10):
        await asyncio.sleep(0)


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(at("10:30"))


@pytest.fixture
def fixture_settings():
    """Settings for the fixture data source; no credentials needed."""
    return load_settings(
        data_source="fixture",
        room_name="Board Room",
        lookahead_days=7,
        refresh_seconds=60,
    )


@pytest.fixture
def live_settings():
    return load_settings(
        data_source="live",
        client_id="client-123",
        client_secret="s3cret",
        tenant_id="tenant-abc",
        room_email="board.room@example.com",
    )
