"""Pydantic data models for events, occupancy and API responses.

``Event`` is the normalized internal record produced by the fetch layer and
consumed by the occupancy resolver. The ``Wire*`` models mirror the calendar
provider's JSON shape so the ``/room-calendar`` endpoint stays compatible with
existing display clients. They are kept separate from the internal record to
decouple our representation from the provider's.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def iso_z(dt: datetime) -> str:
    """Return an RFC3339 timestamp in UTC with a Z suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def naive_utc(dt: datetime) -> str:
    """Return the provider's zone-less ISO form: UTC wall time, no designator."""
    return dt.astimezone(timezone.utc).replace(tzinfo=None).isoformat()


class Event(BaseModel):
    """One reservation of the room, with ``start``/``end`` as aware UTC instants."""

    model_config = ConfigDict(frozen=True)

    id: str
    subject: str = ""
    organizer_name: str = ""
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _ordered(self) -> "Event":
        if self.end < self.start:
            raise ValueError("event end precedes start")
        return self


class OccupancyStatus(str, Enum):
    OCCUPIED = "Occupied"
    FREE = "Free"


class OccupancyResult(BaseModel):
    """Resolver output. ``status`` is ``Occupied`` exactly when ``current`` is set."""

    model_config = ConfigDict(frozen=True)

    status: OccupancyStatus
    current: Optional[Event] = None
    upcoming: List[Event] = []


class FetchOk(BaseModel):
    """Successful fetch cycle."""

    ok: Literal[True] = True
    events: List[Event]


class FetchErr(BaseModel):
    """Failed fetch cycle; ``kind`` mirrors ``FetchFailure.kind``."""

    ok: Literal[False] = False
    kind: str
    message: str


FetchResult = Union[FetchOk, FetchErr]


# Wire format served to display clients.


class WireEmailAddress(BaseModel):
    name: str = ""


class WireOrganizer(BaseModel):
    emailAddress: WireEmailAddress


class WireDateTime(BaseModel):
    dateTime: str


class WireEvent(BaseModel):
    id: str
    subject: str
    organizer: WireOrganizer
    start: WireDateTime
    end: WireDateTime

    @classmethod
    def from_event(cls, event: Event) -> "WireEvent":
        return cls(
            id=event.id,
            subject=event.subject,
            organizer=WireOrganizer(emailAddress=WireEmailAddress(name=event.organizer_name)),
            start=WireDateTime(dateTime=naive_utc(event.start)),
            end=WireDateTime(dateTime=naive_utc(event.end)),
        )


class EventView(BaseModel):
    """Event as rendered by the wallboard: UTC instants with a Z suffix."""

    id: str
    subject: str
    organizer: str
    startIso: str
    endIso: str

    @classmethod
    def from_event(cls, event: Event) -> "EventView":
        return cls(
            id=event.id,
            subject=event.subject,
            organizer=event.organizer_name,
            startIso=iso_z(event.start),
            endIso=iso_z(event.end),
        )


class RoomStatusPayload(BaseModel):
    """Represents the computed status of the room at a point in time."""

    roomName: str
    status: OccupancyStatus
    current: Optional[EventView] = None
    upcoming: List[EventView] = []
    nextChangeIso: Optional[str] = None

    generatedAt: str
    fetchedAt: Optional[str] = None
    stale: bool = False
    lastError: Optional[str] = None
    refreshSeconds: int
    displayTimezone: str


class AgendaPayload(BaseModel):
    date: str
    days: List[str] = Field(default_factory=list)
    items: List[EventView] = []
    lastError: Optional[str] = None


class FetchErrorPayload(BaseModel):
    error: str
    kind: str
    message: str
