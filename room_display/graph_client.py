"""Calendar provider client utilities for the room display service.

This module exchanges application credentials for a bearer token (client
credentials grant) and queries the room's calendar view for a bounded time
window. Raw provider records are normalized into ``Event`` objects here so
nothing downstream needs to know the provider's JSON shape.

Neither class retries. A failed call surfaces as ``AuthFailure`` or
``FetchFailure`` and the poller tries again on its next scheduled tick.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import quote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from pydantic import ValidationError

from .errors import AuthFailure, FetchFailure, MalformedRecord
from .models import Event, iso_z

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Fields requested from calendarView. Anything else the provider sends is ignored.
EVENT_FIELDS = "id,subject,organizer,start,end,isCancelled"
DEFAULT_EXPIRES_IN = 3600

_FRACTION = re.compile(r"\.(\d+)")


def _utcnow() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)


def parse_graph_datetime(value: str, time_zone: Optional[str] = None) -> datetime:
    """Parse a provider ``dateTime`` into an aware UTC datetime.

    The provider omits the zone designator and may send seven fractional
    digits. A value without an offset is interpreted in ``time_zone``,
    which defaults to UTC.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        if time_zone and time_zone.upper() not in ("UTC", "ETC/UTC"):
            parsed = parsed.replace(tzinfo=ZoneInfo(time_zone))
        else:
            parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_boundary(raw: Dict[str, Any], key: str) -> datetime:
    block = raw.get(key)
    if not isinstance(block, dict) or not isinstance(block.get("dateTime"), str):
        raise MalformedRecord(f"event {raw.get('id')!r} has no {key}.dateTime")
    try:
        return parse_graph_datetime(block["dateTime"], block.get("timeZone"))
    except (ValueError, ZoneInfoNotFoundError) as exc:
        raise MalformedRecord(f"event {raw.get('id')!r} has unparseable {key}: {exc}") from exc


def normalize_event(raw: Any) -> Event:
    """Convert one raw calendarView record into an ``Event``.

    Raises:
        MalformedRecord: if the id or either boundary is missing, or the
            range is inverted.
    """
    if not isinstance(raw, dict):
        raise MalformedRecord(f"event record is not an object: {type(raw).__name__}")
    event_id = raw.get("id")
    if not isinstance(event_id, str) or not event_id:
        raise MalformedRecord("event record has no id")
    start = _parse_boundary(raw, "start")
    end = _parse_boundary(raw, "end")
    organizer = raw.get("organizer")
    address = organizer.get("emailAddress") if isinstance(organizer, dict) else None
    name = (address.get("name") if isinstance(address, dict) else None) or ""
    try:
        return Event(
            id=event_id,
            subject=raw.get("subject") or "",
            organizer_name=name,
            start=start,
            end=end,
        )
    except ValidationError as exc:
        raise MalformedRecord(f"event {event_id!r} is invalid: {exc.errors()[0]['msg']}") from exc


def normalize_events(records: Iterable[Any]) -> List[Event]:
    """Normalize provider records, logging and dropping malformed or cancelled ones."""
    events: List[Event] = []
    for raw in records:
        if isinstance(raw, dict) and raw.get("isCancelled"):
            continue
        try:
            events.append(normalize_event(raw))
        except MalformedRecord as exc:
            logger.warning("Dropping malformed calendar record: %s", exc)
    return events


class TokenProvider:
    """Client-credentials token source with an in-memory cache.

    The cached token is reused until ``expires_in - safety_margin`` seconds
    after it was issued. Concurrent callers during a cache miss share one
    request: the lock is re-checked after acquisition so only the first
    caller talks to the identity provider.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        token_endpoint: str,
        client_id: str,
        client_secret: str,
        scope: str,
        safety_margin: timedelta = timedelta(seconds=30),
        clock: Clock = _utcnow,
    ) -> None:
        if safety_margin <= timedelta(0):
            raise ValueError("safety_margin must be positive")
        self._http_client = http_client
        self._token_endpoint = token_endpoint
        self._client_id = client_id
        self._client_secret = client_secret
        self._scope = scope
        self._safety_margin = safety_margin
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._lock: Optional[asyncio.Lock] = None

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    def _cached(self) -> Optional[str]:
        if self._token is None or self._expires_at is None:
            return None
        if self._clock() < self._expires_at:
            return self._token
        return None

    async def get_token(self) -> str:
        """Return a bearer token, requesting a new one only on a cache miss.

        Raises:
            AuthFailure: if the exchange is rejected or the endpoint is unreachable.
        """
        token = self._cached()
        if token is not None:
            return token
        # Created on first use so it binds to the loop that serves requests.
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            token = self._cached()
            if token is not None:
                return token
            return await self._acquire()

    async def _acquire(self) -> str:
        requested_at = self._clock()
        try:
            response = await self._http_client.post(
                self._token_endpoint,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "grant_type": "client_credentials",
                    "scope": self._scope,
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            logger.error("Token request failed: %s", exc)
            raise AuthFailure(f"token endpoint unreachable: {exc}") from exc

        if response.status_code != 200:
            logger.error("Token request rejected (status=%s): %s", response.status_code, _error_text(response))
            raise AuthFailure(f"token request rejected ({response.status_code}): {_error_text(response)}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthFailure("token endpoint returned invalid JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token:
            raise AuthFailure("token response is missing access_token")

        expires_in = payload.get("expires_in", DEFAULT_EXPIRES_IN)
        try:
            lifetime = timedelta(seconds=int(expires_in))
        except (TypeError, ValueError):
            lifetime = timedelta(seconds=DEFAULT_EXPIRES_IN)

        self._token = access_token
        self._expires_at = requested_at + lifetime - self._safety_margin
        logger.info("Acquired access token valid until %s", iso_z(self._expires_at))
        return access_token


class EventFetcher:
    """Reads a room's calendar view for a time window."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: TokenProvider,
        *,
        base_url: str,
        page_size: int = 100,
    ) -> None:
        self._http_client = http_client
        self._token_provider = token_provider
        self._base_url = base_url.rstrip("/")
        self._page_size = page_size

    async def list_events(self, window_start: datetime, window_end: datetime, room: str) -> List[Event]:
        """Return normalized events overlapping ``[window_start, window_end]`` for ``room``.

        Follows ``@odata.nextLink`` pagination until the provider stops
        returning one.

        Raises:
            FetchFailure: on token, transport or provider errors.
        """
        try:
            token = await self._token_provider.get_token()
        except AuthFailure as exc:
            raise FetchFailure(str(exc), kind="auth") from exc

        headers = {
            "Authorization": f"Bearer {token}",
            "Prefer": 'outlook.timezone="UTC"',
            "Accept": "application/json",
        }
        url: Optional[str] = f"{self._base_url}/users/{quote(room)}/calendarView"
        params: Optional[Dict[str, Any]] = {
            "startDateTime": iso_z(window_start),
            "endDateTime": iso_z(window_end),
            "$select": EVENT_FIELDS,
            "$orderby": "start/dateTime",
            "$top": self._page_size,
        }
        records: List[Any] = []
        while url is not None:
            payload = await self._get_page(url, params, headers)
            value = payload.get("value", [])
            if not isinstance(value, list):
                raise FetchFailure("calendarView response 'value' is not a list", kind="provider")
            records.extend(value)
            url = payload.get("@odata.nextLink")
            params = None
        events = normalize_events(records)
        logger.info("Fetched %d events for %s (%d raw records)", len(events), room, len(records))
        return events

    async def _get_page(self, url: str, params: Optional[Dict[str, Any]], headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = await self._http_client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise FetchFailure(f"calendar query timed out: {exc}", kind="timeout") from exc
        except httpx.HTTPError as exc:
            raise FetchFailure(f"calendar query failed: {exc}", kind="transport") from exc

        if response.status_code in (401, 403):
            raise FetchFailure(
                f"calendar query not authorized ({response.status_code}): {_error_text(response)}", kind="auth"
            )
        if response.status_code != 200:
            raise FetchFailure(
                f"calendar query failed ({response.status_code}): {_error_text(response)}", kind="provider"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchFailure("calendar query returned invalid JSON", kind="provider") from exc
        if not isinstance(payload, dict):
            raise FetchFailure("calendar query returned a non-object body", kind="provider")
        return payload


def _error_text(response: httpx.Response) -> str:
    """Extract a short provider error message without echoing secrets."""
    try:
        payload = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return " ".join(error["message"].split())[:200]
        description = payload.get("error_description")
        if isinstance(description, str):
            return " ".join(description.split())[:200]
        if isinstance(error, str):
            return error[:200]
    return f"HTTP {response.status_code}"
