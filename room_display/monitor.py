"""Background polling of the room calendar.

``RoomMonitor`` owns two periodic asyncio tasks:

* the refresh loop re-fetches events every ``refresh_seconds``. Ticks fire on
  a fixed schedule; a tick is skipped while the previous fetch is still in
  flight. Every fetch is bounded by ``fetch_timeout_seconds``.
* the clock loop re-resolves occupancy every ``clock_seconds`` against the
  injected clock and logs Free/Occupied transitions. It never awaits I/O.

Fetches can also be triggered on demand (the Retry button), so two may
overlap. Each takes a sequence number when it starts and its result only
lands if nothing newer has already succeeded; a slow stale response can
never overwrite fresher data.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable, List, Optional, Set, Tuple

from .models import Event, FetchErr, FetchOk, FetchResult, OccupancyResult, OccupancyStatus
from .occupancy import resolve
from .sources import DataSource

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MonitorSnapshot:
    """Latest applied fetch state, as served to the HTTP layer."""

    events: List[Event] = field(default_factory=list)
    fetched_at: Optional[datetime] = None
    last_error: Optional[FetchErr] = None

    @property
    def has_data(self) -> bool:
        return self.fetched_at is not None

    @property
    def stale(self) -> bool:
        return self.has_data and self.last_error is not None


class RoomMonitor:
    def __init__(
        self,
        source: DataSource,
        *,
        refresh_seconds: float = 60,
        clock_seconds: float = 1,
        fetch_timeout_seconds: float = 10,
        lookahead_days: int = 30,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._source = source
        self._refresh_seconds = refresh_seconds
        self._clock_seconds = clock_seconds
        self._fetch_timeout = fetch_timeout_seconds
        self._lookahead_days = lookahead_days
        self._tz = tz
        self._clock = clock

        self._snapshot = MonitorSnapshot()
        self._next_seq = 0
        self._success_seq = 0
        self._error_seq = 0
        self._in_flight = 0
        self._status: Optional[OccupancyStatus] = None
        self._tasks: List[asyncio.Task] = []
        self._pending: Set[asyncio.Task] = set()

    @property
    def tz(self) -> tzinfo:
        return self._tz

    @property
    def in_flight(self) -> bool:
        return self._in_flight > 0

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self._clock().astimezone(self._tz).date()

    def snapshot(self) -> MonitorSnapshot:
        return self._snapshot

    def occupancy(self, now: Optional[datetime] = None) -> OccupancyResult:
        return resolve(self._snapshot.events, now or self._clock())

    def window(self) -> Tuple[datetime, datetime]:
        """Query window: local midnight today through ``lookahead_days`` days."""
        start = datetime.combine(self.today(), time.min, tzinfo=self._tz).astimezone(timezone.utc)
        return start, start + timedelta(days=self._lookahead_days)

    async def refresh(self) -> FetchResult:
        """Run one fetch cycle and apply its result unless superseded."""
        self._next_seq += 1
        seq = self._next_seq
        started = self._clock()
        window_start, window_end = self.window()
        self._in_flight += 1
        try:
            result = await asyncio.wait_for(
                self._source.list_events(window_start, window_end), timeout=self._fetch_timeout
            )
        except asyncio.TimeoutError:
            logger.error("Calendar fetch #%d timed out after %.1fs", seq, self._fetch_timeout)
            result = FetchErr(kind="timeout", message=f"fetch timed out after {self._fetch_timeout:g}s")
        finally:
            self._in_flight -= 1
        self._apply(seq, started, result)
        return result

    def _apply(self, seq: int, started: datetime, result: FetchResult) -> bool:
        if seq < self._success_seq:
            logger.debug("Discarding fetch #%d: superseded by #%d", seq, self._success_seq)
            return False
        current = self._snapshot
        if isinstance(result, FetchOk):
            self._success_seq = seq
            last_error = current.last_error if self._error_seq > seq else None
            self._snapshot = MonitorSnapshot(events=list(result.events), fetched_at=started, last_error=last_error)
        else:
            if seq < self._error_seq:
                return False
            self._error_seq = seq
            self._snapshot = MonitorSnapshot(
                events=current.events, fetched_at=current.fetched_at, last_error=result
            )
        self.tick()
        return True

    def tick(self) -> OccupancyResult:
        """Re-resolve occupancy against the clock and log status changes."""
        result = self.occupancy()
        if result.status is not self._status:
            if result.current is not None:
                logger.info("Room is now %s: %r until %s", result.status.value, result.current.subject, result.current.end)
            else:
                logger.info("Room is now %s", result.status.value)
            self._status = result.status
        return result

    async def _guarded_refresh(self) -> None:
        try:
            await self.refresh()
        except Exception:
            logger.exception("Unexpected error during calendar refresh")

    async def refresh_if_idle(self) -> Optional[FetchResult]:
        """Run a fetch cycle now, or return ``None`` if one is already running."""
        if self.in_flight:
            logger.debug("Refresh requested while a fetch is in flight; not starting another")
            return None
        return await self.refresh()

    def trigger_refresh(self) -> Optional[asyncio.Task]:
        """Start a refresh in the background unless one is already running."""
        if self.in_flight:
            logger.debug("Skipping refresh tick: previous fetch still in flight")
            return None
        task = asyncio.create_task(self._guarded_refresh())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _refresh_loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            next_tick += self._refresh_seconds
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            self.trigger_refresh()

    async def _clock_loop(self) -> None:
        while True:
            await asyncio.sleep(self._clock_seconds)
            self.tick()

    async def start(self) -> None:
        """Fetch once, then start the periodic refresh and clock tasks."""
        await self._guarded_refresh()
        self.tick()
        self._tasks = [
            asyncio.create_task(self._refresh_loop(), name="room-refresh"),
            asyncio.create_task(self._clock_loop(), name="room-clock"),
        ]

    async def stop(self) -> None:
        """Cancel the periodic tasks and any fetch still running."""
        tasks = self._tasks + list(self._pending)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._pending.clear()
        await self._source.aclose()
