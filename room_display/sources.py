"""Event sources for the room display.

A ``DataSource`` produces one fetch cycle's worth of events as a tagged
result. ``LiveDataSource`` reads the room calendar through ``EventFetcher``;
``FixtureDataSource`` serves canned demo data for presentations and kiosk
setup. Which one runs is chosen by the ``DATA_SOURCE`` setting.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import httpx

from .config import DataSourceKind, FixtureScenario, Settings
from .errors import FetchFailure
from .graph_client import EventFetcher, TokenProvider
from .models import Event, FetchErr, FetchOk, FetchResult

logger = logging.getLogger(__name__)


class DataSource(ABC):
    @abstractmethod
    async def list_events(self, window_start: datetime, window_end: datetime) -> FetchResult:
        """Return events overlapping the window, or the reason they could not be read."""

    async def aclose(self) -> None:
        """Release any held resources."""


class LiveDataSource(DataSource):
    """Reads the configured room's calendar from the provider."""

    def __init__(self, fetcher: EventFetcher, room: str, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self._fetcher = fetcher
        self._room = room
        self._http_client = http_client

    async def list_events(self, window_start: datetime, window_end: datetime) -> FetchResult:
        try:
            events = await self._fetcher.list_events(window_start, window_end, self._room)
        except FetchFailure as exc:
            logger.error("Calendar fetch failed (kind=%s): %s", exc.kind, exc)
            return FetchErr(kind=exc.kind, message=str(exc))
        return FetchOk(events=events)

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()


class FixtureDataSource(DataSource):
    """Demo data anchored to the current time.

    The ``busy`` scenario has a meeting in progress and one later on; the
    ``available`` scenario has the room free until tomorrow.
    """

    def __init__(self, scenario: FixtureScenario = FixtureScenario.BUSY, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._scenario = scenario
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def events(self, now: datetime) -> List[Event]:
        now = now.replace(second=0, microsecond=0)
        if self._scenario is FixtureScenario.BUSY:
            return [
                Event(
                    id="fixture-current",
                    subject="Capstone Project Jury Presentation",
                    organizer_name="Demo Organizer",
                    start=now,
                    end=now + timedelta(minutes=45),
                ),
                Event(
                    id="fixture-next",
                    subject="Department Meeting",
                    organizer_name="",
                    start=now + timedelta(minutes=60),
                    end=now + timedelta(minutes=120),
                ),
            ]
        return [
            Event(
                id="fixture-tomorrow",
                subject="Planning for Tomorrow",
                organizer_name="",
                start=now + timedelta(hours=24),
                end=now + timedelta(hours=25),
            )
        ]

    async def list_events(self, window_start: datetime, window_end: datetime) -> FetchResult:
        events = [e for e in self.events(self._clock()) if e.end >= window_start and e.start <= window_end]
        logger.debug("Serving %d fixture events (%s)", len(events), self._scenario.value)
        return FetchOk(events=events)


def build_data_source(settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> DataSource:
    """Construct the data source selected by configuration.

    For the live source an ``httpx.AsyncClient`` is created when none is
    given; the source then owns it and closes it in ``aclose``.
    """
    if settings.data_source is DataSourceKind.FIXTURE:
        logger.warning("DATA_SOURCE=fixture: serving demo data (%s), not the live calendar", settings.fixture_status.value)
        return FixtureDataSource(settings.fixture_status)

    owned = http_client is None
    client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(settings.fetch_timeout_seconds))
    tokens = TokenProvider(
        client,
        token_endpoint=settings.token_endpoint,
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        scope=settings.graph_scope,
        safety_margin=timedelta(seconds=settings.token_safety_margin_seconds),
    )
    fetcher = EventFetcher(client, tokens, base_url=settings.graph_base_url)
    return LiveDataSource(fetcher, settings.room_email, http_client=client if owned else None)
