"""FastAPI application for the room display service.

This module defines the application factory, configures logging, wires the
background ``RoomMonitor`` into the app lifespan, and serves both a JSON API
and a minimal HTML wallboard. It is designed to run on a small device next
to the display, so the UI is embedded rather than built separately.

Endpoints:
  - ``/room-calendar``: normalized events in the provider's JSON shape.
  - ``/api/status``: occupancy state, current meeting and upcoming list.
  - ``/api/agenda``: one day's events for the agenda strip.
  - ``/api/refresh``: fetch now (used by the Retry button).
  - ``/healthz``: simple health check endpoint.
  - ``/``: serve the wallboard UI.

Fetch failures are never hidden: ``/room-calendar`` answers 503 when the
latest fetch failed, and ``/api/status`` labels old data with ``stale`` and
``lastError`` so the UI can show a warning instead of pretending it is fresh.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from html import escape
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse

from .config import Settings
from .models import (
    AgendaPayload,
    EventView,
    FetchErr,
    FetchErrorPayload,
    RoomStatusPayload,
    WireEvent,
    iso_z,
)
from .monitor import RoomMonitor
from .occupancy import agenda_days, agenda_for_day, next_change
from .sources import DataSource, build_data_source

logger = logging.getLogger("room_display")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")


def _utcnow() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)


def _describe(error: Optional[FetchErr]) -> Optional[str]:
    if error is None:
        return None
    return f"{error.kind.upper()}_ERROR: {error.message}"


def create_app(
    settings: Settings,
    source: Optional[DataSource] = None,
    clock: Callable[[], datetime] = _utcnow,
) -> FastAPI:
    """Build the FastAPI application around a configured data source.

    ``source`` and ``clock`` are injectable for tests; by default the source
    is chosen from ``settings.data_source`` and the clock is wall time.
    """
    monitor = RoomMonitor(
        source or build_data_source(settings),
        refresh_seconds=settings.refresh_seconds,
        clock_seconds=settings.clock_seconds,
        fetch_timeout_seconds=settings.fetch_timeout_seconds,
        lookahead_days=settings.lookahead_days,
        tz=settings.tz,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting room display for %s (source=%s, refresh=%ss)",
            settings.room_name,
            settings.data_source.value,
            settings.refresh_seconds,
        )
        await monitor.start()
        try:
            yield
        finally:
            await monitor.stop()
            logger.info("Room display stopped")

    app = FastAPI(title="Room Display Service", lifespan=lifespan)
    app.state.monitor = monitor
    app.state.settings = settings

    # CORS is off by default because the wallboard and API share an origin.
    # Set ENABLE_CORS=yes to serve the API to other hosts, such as a tablet app.
    if settings.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    @app.get("/room-calendar", response_model=List[WireEvent])
    def room_calendar():
        """Return the latest fetched events, or 503 if the latest fetch failed."""
        snap = monitor.snapshot()
        if snap.last_error is not None or not snap.has_data:
            error = snap.last_error or FetchErr(kind="unavailable", message="no calendar data fetched yet")
            payload = FetchErrorPayload(error="Calendar data unavailable", kind=error.kind, message=error.message)
            return JSONResponse(status_code=503, content=payload.model_dump())
        events = sorted(snap.events, key=lambda e: (e.start, e.id))
        return [WireEvent.from_event(e) for e in events]

    @app.get("/api/status", response_model=RoomStatusPayload)
    def api_status() -> RoomStatusPayload:
        """Return computed occupancy for the room at the current instant."""
        snap = monitor.snapshot()
        now = monitor.now()
        result = monitor.occupancy(now)
        change = next_change(result)
        return RoomStatusPayload(
            roomName=settings.room_name,
            status=result.status,
            current=EventView.from_event(result.current) if result.current else None,
            upcoming=[EventView.from_event(e) for e in result.upcoming],
            nextChangeIso=iso_z(change) if change else None,
            generatedAt=iso_z(now),
            fetchedAt=iso_z(snap.fetched_at) if snap.fetched_at else None,
            stale=snap.stale,
            lastError=_describe(snap.last_error),
            refreshSeconds=settings.refresh_seconds,
            displayTimezone=settings.display_timezone,
        )

    @app.get("/api/agenda", response_model=AgendaPayload)
    def api_agenda(day: Optional[date] = Query(default=None, alias="date")) -> AgendaPayload:
        """Return events on one day (display timezone), excluding the current meeting."""
        snap = monitor.snapshot()
        today = monitor.today()
        target = day or today
        result = monitor.occupancy()
        items = agenda_for_day(snap.events, result, target, monitor.tz)
        return AgendaPayload(
            date=target.isoformat(),
            days=[d.isoformat() for d in agenda_days(today, settings.lookahead_days)],
            items=[EventView.from_event(e) for e in items],
            lastError=_describe(snap.last_error),
        )

    @app.post("/api/refresh")
    async def api_refresh() -> Dict[str, Any]:
        """Fetch immediately instead of waiting for the next scheduled tick."""
        try:
            result = await monitor.refresh_if_idle()
        except Exception as exc:
            logger.exception("Error refreshing calendar: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc))
        if result is None:
            return {"ok": False, "lastError": "refresh already in progress"}
        if isinstance(result, FetchErr):
            return {"ok": False, "lastError": _describe(result)}
        return {"ok": True, "lastError": None}

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        """Health check endpoint for monitoring."""
        return {"ok": True, "time": iso_z(_utcnow())}

    @app.get("/", response_class=HTMLResponse)
    def wallboard_page() -> HTMLResponse:
        """Serve the single page wallboard application."""
        return HTMLResponse(content=render_wallboard(settings))

    return app


def render_wallboard(settings: Settings) -> str:
    """Return the wallboard HTML.

    The UI is intentionally embedded here rather than in a separate template or
    static file. This makes deployment easier on devices with limited resources
    and avoids the need for a frontend build chain. The clock ticks locally
    every second; data is re-polled every ``refresh_seconds``.
    """
    room_name = escape(settings.room_name)
    css_vars = """
    :root {
      --bg: #0b0d12;
      --fg: #e9eefc;
      --card-bg: rgba(255,255,255,0.04);
      --card-border: rgba(255,255,255,0.10);
      --busy: #ff5252;
      --busy-bg: rgba(255, 60, 80, 0.12);
      --free: #00e676;
      --free-bg: rgba(70, 220, 140, 0.10);
    }
    """
    html = f"""
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>{room_name}</title>
  <style>
    {{css_vars}}
    body {{
      margin: 0;
      font-family: system-ui, -apple-system, Segoe UI, Roboto, Ubuntu, Cantarell, Noto Sans, Arial;
      background: var(--bg);
      color: var(--fg);
    }}
    header {{
      display: flex; justify-content: space-between; align-items: center;
      padding: 24px 36px 16px;
    }}
    h1 {{ margin: 0; font-size: 26px; font-weight: 700; }}
    .date {{ opacity: 0.6; font-size: 14px; text-transform: uppercase; letter-spacing: 1px; }}
    .clock {{ font-size: 48px; font-weight: 300; }}
    main {{ display: flex; gap: 28px; padding: 0 36px 28px; }}
    .card {{
      flex: 1.2; border-radius: 24px; padding: 28px;
      border: 1px solid var(--card-border); background: var(--card-bg);
      min-height: 320px;
    }}
    .card.busy {{ background: var(--busy-bg); }}
    .card.free {{ background: var(--free-bg); }}
    .label {{ font-size: 16px; font-weight: 700; letter-spacing: 2px; }}
    .busy .label {{ color: var(--busy); }}
    .free .label {{ color: var(--free); }}
    .subject {{ font-size: 32px; font-weight: 600; margin: 24px 0 12px; }}
    .organizer {{ opacity: 0.75; font-size: 18px; }}
    .tag {{
      display: inline-block; margin-top: 18px; padding: 8px 14px;
      border-radius: 12px; border: 1px solid rgba(255,255,255,0.3);
    }}
    .agenda {{ flex: 0.8; border-radius: 24px; padding: 24px; background: rgba(0,0,0,0.3); }}
    .days {{ display: flex; gap: 8px; overflow-x: auto; padding-bottom: 10px; margin-bottom: 16px;
             border-bottom: 1px solid rgba(255,255,255,0.1); }}
    .day {{ min-width: 54px; padding: 8px 0; text-align: center; border-radius: 12px; cursor: pointer;
            border: 1px solid rgba(255,255,255,0.2); background: rgba(255,255,255,0.05); }}
    .day.active {{ background: var(--fg); color: #000; }}
    .item {{ display: flex; gap: 14px; margin-bottom: 16px; }}
    .item .time {{ width: 52px; font-weight: 600; }}
    .item .who {{ opacity: 0.5; font-size: 13px; }}
    .errorbar {{
      margin: 0 36px 14px; padding: 10px 12px; border-radius: 12px;
      border: 1px solid rgba(255,255,255,0.14); background: rgba(255, 165, 0, 0.10); font-size: 13px;
    }}
    .offline {{ text-align: center; padding-top: 18vh; }}
    .offline h2 {{ color: var(--busy); }}
    button {{
      background: rgba(255,255,255,0.1); color: var(--fg); font-size: 16px;
      padding: 12px 24px; border-radius: 12px; border: 1px solid rgba(255,255,255,0.2);
    }}
    .muted {{ opacity: 0.5; }}
  </style>
</head>
<body>
  <header>
    <div>
      <h1>{room_name}</h1>
      <div class="date" id="date"></div>
    </div>
    <div class="clock" id="clock"></div>
  </header>
  <div id="error" class="errorbar" style="display:none;"></div>
  <div id="offline" class="offline" style="display:none;">
    <h2>No Connection</h2>
    <p id="offline-reason"></p>
    <button id="retry">Retry</button>
  </div>
  <main id="board">
    <section class="card" id="card">
      <div class="label" id="label">Loading…</div>
      <div class="subject" id="subject"></div>
      <div class="organizer" id="organizer"></div>
      <div class="tag" id="until" style="display:none;"></div>
    </section>
    <section class="agenda">
      <div class="days" id="days"></div>
      <div id="items"></div>
    </section>
  </main>
<script>
const REFRESH_MS = {settings.refresh_seconds} * 1000;
const TZ = {json.dumps(settings.display_timezone)};
let selectedDate = null;
let inFlight = false;

function fmtTime(iso) {{
  return new Date(iso).toLocaleTimeString('en-US', {{hour12: false, hour: '2-digit', minute: '2-digit', timeZone: TZ}});
}}
function tickClock() {{
  const now = new Date();
  document.getElementById("clock").textContent =
    now.toLocaleTimeString('en-US', {{hour12: false, hour: '2-digit', minute: '2-digit', timeZone: TZ}});
  document.getElementById("date").textContent =
    now.toLocaleDateString('en-US', {{weekday: 'long', day: 'numeric', month: 'long', timeZone: TZ}});
}}
function showOffline(reason) {{
  document.getElementById("board").style.display = "none";
  document.getElementById("offline").style.display = "block";
  document.getElementById("offline-reason").textContent = reason;
}}
function showBoard() {{
  document.getElementById("offline").style.display = "none";
  document.getElementById("board").style.display = "flex";
}}
function renderStatus(data) {{
  const busy = data.status === "Occupied";
  document.getElementById("card").className = busy ? "card busy" : "card free";
  document.getElementById("label").textContent = busy ? "CURRENTLY BUSY" : "AVAILABLE";
  const until = document.getElementById("until");
  if (busy && data.current) {{
    document.getElementById("subject").textContent = data.current.subject;
    document.getElementById("organizer").textContent = data.current.organizer;
    until.style.display = "inline-block";
    until.textContent = `Ends at: ${{fmtTime(data.current.endIso)}}`;
  }} else {{
    document.getElementById("subject").textContent = "Room Available";
    document.getElementById("organizer").textContent = data.nextChangeIso
      ? `Next booking at ${{fmtTime(data.nextChangeIso)}}` : "Open for reservations.";
    until.style.display = "none";
  }}
  const err = document.getElementById("error");
  if (data.lastError) {{
    err.style.display = "block";
    const when = data.fetchedAt ? ` · showing data from ${{fmtTime(data.fetchedAt)}}` : "";
    err.textContent = `Warning: ${{data.lastError}}${{when}}`;
  }} else {{
    err.style.display = "none";
    err.textContent = "";
  }}
}}
function renderAgenda(data) {{
  const days = document.getElementById("days");
  days.innerHTML = "";
  data.days.forEach(d => {{
    const el = document.createElement("div");
    el.className = d === data.date ? "day active" : "day";
    const dt = new Date(d + "T12:00:00Z");
    el.innerHTML = `<div class="muted">${{dt.toLocaleDateString('en-US', {{weekday: 'short', timeZone: 'UTC'}})}}</div>` +
                   `<div>${{dt.getUTCDate()}}</div>`;
    el.addEventListener("click", () => {{ selectedDate = d; loadAgenda(); }});
    days.appendChild(el);
  }});
  const items = document.getElementById("items");
  items.innerHTML = "";
  if (!data.items.length) {{
    items.innerHTML = '<div class="muted">No events scheduled.</div>';
    return;
  }}
  data.items.forEach(item => {{
    const row = document.createElement("div");
    row.className = "item";
    const time = document.createElement("div");
    time.className = "time";
    time.textContent = fmtTime(item.startIso);
    const body = document.createElement("div");
    const subject = document.createElement("div");
    subject.textContent = item.subject;
    const who = document.createElement("div");
    who.className = "who";
    who.textContent = item.organizer;
    body.appendChild(subject);
    body.appendChild(who);
    row.appendChild(time);
    row.appendChild(body);
    items.appendChild(row);
  }});
}}
async function loadAgenda() {{
  const q = selectedDate ? `?date=${{selectedDate}}` : "";
  const r = await fetch(`/api/agenda${{q}}`, {{cache: "no-store"}});
  renderAgenda(await r.json());
}}
async function refresh() {{
  if (inFlight) return;
  inFlight = true;
  const ctrl = new AbortController();
  const timer = setTimeout(() => ctrl.abort(), 15000);
  try {{
    const r = await fetch("/api/status", {{cache: "no-store", signal: ctrl.signal}});
    const data = await r.json();
    if (!data.fetchedAt && data.lastError) {{
      showOffline(data.lastError);
      return;
    }}
    showBoard();
    renderStatus(data);
    await loadAgenda();
  }} catch (e) {{
    showOffline("Could not connect to server. Please check network.");
  }} finally {{
    clearTimeout(timer);
    inFlight = false;
  }}
}}
document.getElementById("retry").addEventListener("click", async () => {{
  await fetch("/api/refresh", {{method: "POST"}}).catch(() => null);
  refresh();
}});
tickClock();
setInterval(tickClock, 1000);
refresh();
setInterval(refresh, REFRESH_MS);
</script>
</body>
</html>
"""  # noqa: E501
    return html.replace("{css_vars}", css_vars)
