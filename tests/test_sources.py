"""Tests for room_display.sources."""

from datetime import timedelta

import httpx
import pytest

from room_display.config import FixtureScenario
from room_display.errors import FetchFailure
from room_display.models import FetchErr, FetchOk
from room_display.occupancy import resolve
from room_display.sources import FixtureDataSource, LiveDataSource, build_data_source
from tests.conftest import FakeClock, at, make_event


class StubFetcher:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    async def list_events(self, window_start, window_end, room):
        self.calls.append((window_start, window_end, room))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class TestLiveDataSource:
    @pytest.mark.asyncio
    async def test_success_is_tagged_ok(self):
        event = make_event("a", at("10:00"), at("11:00"))
        fetcher = StubFetcher([event])

        result = await LiveDataSource(fetcher, "room@example.com").list_events(at("00:00"), at("23:59"))

        assert isinstance(result, FetchOk)
        assert result.events == [event]
        assert fetcher.calls == [(at("00:00"), at("23:59"), "room@example.com")]

    @pytest.mark.asyncio
    async def test_failure_is_tagged_err(self):
        fetcher = StubFetcher(FetchFailure("token request rejected (401)", kind="auth"))

        result = await LiveDataSource(fetcher, "room@example.com").list_events(at("00:00"), at("23:59"))

        assert isinstance(result, FetchErr)
        assert result.kind == "auth"
        assert "401" in result.message


class TestFixtureDataSource:
    @pytest.mark.asyncio
    async def test_busy_scenario_is_occupied_now(self):
        clock = FakeClock(at("10:30"))
        source = FixtureDataSource(FixtureScenario.BUSY, clock=clock)

        result = await source.list_events(at("00:00"), at("00:00") + timedelta(days=30))
        occupancy = resolve(result.events, clock())

        assert occupancy.current is not None
        assert occupancy.current.end == at("11:15")
        assert [e.start for e in occupancy.upcoming] == [at("11:30")]

    @pytest.mark.asyncio
    async def test_available_scenario_is_free_until_tomorrow(self):
        clock = FakeClock(at("10:30"))
        source = FixtureDataSource(FixtureScenario.AVAILABLE, clock=clock)

        result = await source.list_events(at("00:00"), at("00:00") + timedelta(days=30))
        occupancy = resolve(result.events, clock())

        assert occupancy.current is None
        assert occupancy.upcoming[0].start == at("10:30") + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_window_filters_fixture_events(self):
        source = FixtureDataSource(FixtureScenario.AVAILABLE, clock=FakeClock(at("10:30")))

        result = await source.list_events(at("00:00"), at("23:59"))

        assert result.events == []


class TestBuildDataSource:
    def test_fixture_selected_by_configuration(self, fixture_settings):
        assert isinstance(build_data_source(fixture_settings), FixtureDataSource)

    @pytest.mark.asyncio
    async def test_live_selected_by_configuration(self, live_settings):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))

        source = build_data_source(live_settings, http_client=client)

        assert isinstance(source, LiveDataSource)
        result = await source.list_events(at("00:00"), at("23:59"))
        assert isinstance(result, FetchErr)
        assert result.kind == "auth"
        await client.aclose()
