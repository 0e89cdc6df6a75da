"""Occupancy resolution for a single room.

``resolve`` maps a list of events and a reference instant to a room status,
the event occupying the room (if any) and the ordered list of upcoming
events. It is a pure function: no I/O, no clock of its own.

Interval convention is left-closed, right-open: an event is current when
``start <= now < end``. An event that starts exactly now is current, one
that ends exactly now is already over. Zero-duration events are therefore
never current.

Upstream calendars can contain overlapping bookings. When several events
contain ``now``, the one with the earliest ``start`` wins, then the smallest
``id``. The same ``(start, id)`` key orders the upcoming list, so the output
is deterministic for any input order.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, List, Optional, Sequence

from .models import Event, OccupancyResult, OccupancyStatus


def _order_key(event: Event):
    return (event.start, event.id)


def is_current(event: Event, now: datetime) -> bool:
    return event.start <= now < event.end


def resolve(events: Sequence[Event], now: datetime) -> OccupancyResult:
    """Compute the occupancy of the room at ``now``.

    Events that are neither current nor starting after ``now`` are in the
    past and dropped from both outputs.
    """
    current: Optional[Event] = None
    upcoming: List[Event] = []
    for event in events:
        if is_current(event, now):
            if current is None or _order_key(event) < _order_key(current):
                current = event
        elif event.start > now:
            upcoming.append(event)
    upcoming.sort(key=_order_key)
    return OccupancyResult(
        status=OccupancyStatus.OCCUPIED if current is not None else OccupancyStatus.FREE,
        current=current,
        upcoming=upcoming,
    )


def next_change(result: OccupancyResult) -> Optional[datetime]:
    """When the displayed status next flips, as far as the event list tells.

    While occupied this is the end of the current event; while free it is
    the start of the first upcoming event with a non-zero duration.
    """
    if result.current is not None:
        return result.current.end
    for event in result.upcoming:
        if event.end > event.start:
            return event.start
    return None


def local_day(instant: datetime, tz: tzinfo) -> date:
    return instant.astimezone(tz).date()


def events_on_day(events: Iterable[Event], day: date, tz: tzinfo) -> List[Event]:
    """Filter ``events`` to those whose start falls on ``day`` in ``tz``.

    Input order is preserved, so filtering the resolver's ``upcoming`` list
    yields an already sorted agenda.
    """
    return [event for event in events if local_day(event.start, tz) == day]


def agenda_days(today: date, count: int) -> List[date]:
    """Return ``count`` consecutive dates starting at ``today`` for the date strip."""
    return [today + timedelta(days=offset) for offset in range(count)]


def agenda_for_day(
    events: Sequence[Event], result: OccupancyResult, day: date, tz: tzinfo
) -> List[Event]:
    """Events on ``day`` for the agenda list, excluding the current occupant.

    Unlike ``upcoming`` this keeps events earlier on the same day, so the
    wallboard can show the whole day's schedule.
    """
    ordered = sorted(events, key=_order_key)
    return [event for event in events_on_day(ordered, day, tz) if event != result.current]
