"""Application configuration settings.

This module defines the ``Settings`` class using ``pydantic-settings`` to
load configuration from environment variables. It centralises all runtime
configuration for the service: identity provider credentials, the room
resource to display, polling intervals and the display timezone.

A ``.env`` file is loaded first with ``python-dotenv`` so local development
works without exporting every variable. Under systemd the same variables can
come from an ``EnvironmentFile``; loading here is harmless in that case.
"""

from __future__ import annotations

import os
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError


class DataSourceKind(str, Enum):
    """Where events come from: the live calendar or canned demo data."""

    LIVE = "live"
    FIXTURE = "fixture"


class FixtureScenario(str, Enum):
    BUSY = "busy"
    AVAILABLE = "available"


class Settings(BaseSettings):
    """Configuration values loaded from environment variables.

    Environment variable names map to fields by alias. The identity provider
    credentials and the room address are required only when the live data
    source is selected; everything else has a sensible default.
    """

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    data_source: DataSourceKind = Field(default=DataSourceKind.LIVE, alias="DATA_SOURCE")

    # Identity provider (client-credentials grant)
    client_id: Optional[str] = Field(default=None, alias="CLIENT_ID")
    client_secret: Optional[str] = Field(default=None, alias="CLIENT_SECRET")
    tenant_id: Optional[str] = Field(default=None, alias="TENANT_ID")
    authority_host: str = Field(default="https://login.microsoftonline.com", alias="AUTHORITY_HOST")
    graph_scope: str = Field(default="https://graph.microsoft.com/.default", alias="GRAPH_SCOPE")
    token_safety_margin_seconds: int = Field(
        default=30,
        alias="TOKEN_SAFETY_MARGIN_SECONDS",
        gt=0,
        description="Seconds subtracted from the token lifetime so a token never expires mid-use.",
    )

    # Calendar provider
    graph_base_url: str = Field(default="https://graph.microsoft.com/v1.0", alias="GRAPH_BASE_URL")
    room_email: Optional[str] = Field(default=None, alias="ROOM_EMAIL")
    room_name: str = Field(default="Meeting Room", alias="ROOM_NAME")

    # Polling behaviour
    refresh_seconds: int = Field(
        default=60,
        alias="REFRESH_SECONDS",
        ge=1,
        description="Interval (in seconds) between calendar fetches.",
    )
    clock_seconds: float = Field(
        default=1.0,
        alias="CLOCK_SECONDS",
        gt=0,
        description="Interval (in seconds) between occupancy re-evaluations against the clock.",
    )
    fetch_timeout_seconds: float = Field(
        default=10.0,
        alias="FETCH_TIMEOUT_SECONDS",
        gt=0,
        description="Upper bound on one fetch cycle; longer fetches count as failures.",
    )
    lookahead_days: int = Field(
        default=30,
        alias="LOOKAHEAD_DAYS",
        ge=1,
        description="Days of calendar to query and to offer in the agenda date strip.",
    )
    display_timezone: str = Field(default="UTC", alias="DISPLAY_TIMEZONE")

    # Demo data
    fixture_status: FixtureScenario = Field(default=FixtureScenario.BUSY, alias="FIXTURE_STATUS")

    # HTTP server
    host: str = Field(default="127.0.0.1", alias="HOST")
    port: int = Field(default=3000, alias="PORT")
    enable_cors: bool = Field(default=False, alias="ENABLE_CORS")

    @field_validator("display_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {value!r}") from exc
        return value

    @model_validator(mode="after")
    def _live_credentials_present(self) -> "Settings":
        if self.data_source is DataSourceKind.LIVE:
            missing = [
                alias
                for alias, value in (
                    ("CLIENT_ID", self.client_id),
                    ("CLIENT_SECRET", self.client_secret),
                    ("TENANT_ID", self.tenant_id),
                    ("ROOM_EMAIL", self.room_email),
                )
                if not value or not value.strip()
            ]
            if missing:
                raise ValueError(f"missing required setting(s) for live data source: {', '.join(missing)}")
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.display_timezone)

    @property
    def token_endpoint(self) -> str:
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}/oauth2/v2.0/token"


def load_settings(env_file: Optional[str] = None, **overrides) -> Settings:
    """Build ``Settings`` from the environment, raising ``ConfigError`` on failure.

    ``overrides`` are passed straight to the model and win over environment
    values; tests use them to avoid touching ``os.environ``.
    """
    load_dotenv(env_file or os.getenv("ROOM_DISPLAY_ENV", ".env"))
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigError(f"invalid configuration: {problems}") from exc
