"""Pydantic schemas for TTC upstream payloads.

The live-alerts feed is loosely typed: list fields sometimes arrive as a single
object, ids as integers, stop names as arrays. Validators here turn every such
variant into one canonical shape so nothing downstream branches on it.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ttc_incidents.core.utils import as_utc


def as_list(value: Any) -> list[Any]:  # noqa: ANN401
    """
    Normalise an object-or-array upstream field to a list.

    Example:
        >>> as_list({"id": 1})
        [{'id': 1}]
        >>> as_list(None)
        []
    """
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _first_text(value: Any) -> str | None:  # noqa: ANN401
    for item in as_list(value):
        if item is None:
            continue
        text = str(item).strip()
        if text:
            return text
    return None


# ==================== Live alerts feed ====================


class ChildAlert(BaseModel):
    """Scheduled active window of a live alert."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    start_time: datetime | None = Field(default=None, alias="startTime")
    end_time: datetime | None = Field(default=None, alias="endTime")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str | None:  # noqa: ANN401
        return None if v is None else str(v)

    @field_validator("start_time", "end_time", mode="after")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        return None if v is None else as_utc(v)


class ActivePeriod(BaseModel):
    """Declared active period of a live alert."""

    model_config = ConfigDict(extra="ignore")

    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", "end", mode="after")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        return None if v is None else as_utc(v)


class LiveAlertItem(BaseModel):
    """One element of the live feed's ``routes`` array."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    header_text: str | None = Field(default=None, alias="headerText")
    title: str | None = None
    description: str | None = None
    effect: str | None = None
    effect_desc: str | None = Field(default=None, alias="effectDesc")
    route: str | None = None
    route_type: str | None = Field(default=None, alias="routeType")
    cause: str | None = None
    direction: str | None = None
    stop_start: str | None = Field(default=None, alias="stopStart")
    stop_end: str | None = Field(default=None, alias="stopEnd")
    child_alerts: list[ChildAlert] = Field(default_factory=list, alias="childAlerts")
    active_period: list[ActivePeriod] = Field(default_factory=list, alias="activePeriod")

    @field_validator("id", "route", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str | None:  # noqa: ANN401
        if v is None:
            return None
        return str(v).strip()

    @field_validator("id", mode="after")
    @classmethod
    def require_id(cls, v: str) -> str:
        if not v:
            msg = "alert id is empty"
            raise ValueError(msg)
        return v

    @field_validator("direction", "stop_start", "stop_end", mode="before")
    @classmethod
    def first_text(cls, v: Any) -> str | None:  # noqa: ANN401
        return _first_text(v)

    @field_validator("child_alerts", "active_period", mode="before")
    @classmethod
    def normalize_list(cls, v: Any) -> list[Any]:  # noqa: ANN401
        return as_list(v)

    @property
    def display_text(self) -> str:
        """Header text, falling back to title."""
        return (self.header_text or self.title or "").strip()


class AccessibilityItem(BaseModel):
    """One element of the live feed's ``accessibility`` array."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    header_text: str | None = Field(default=None, alias="headerText")
    description: str | None = None
    elevator_code: str | None = Field(default=None, alias="elevatorCode")
    effect: str | None = None
    station: str | None = Field(default=None, alias="stationName")

    @field_validator("id", "elevator_code", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str | None:  # noqa: ANN401
        if v is None:
            return None
        return str(v).strip()


class LiveAlertsPayload(BaseModel):
    """Top-level live feed payload; items stay raw so one bad item can be skipped."""

    model_config = ConfigDict(extra="ignore")

    routes: list[dict[str, Any]] = Field(default_factory=list)
    accessibility: list[dict[str, Any]] = Field(default_factory=list)
    last_updated: datetime | None = Field(default=None, alias="lastUpdated")

    @field_validator("routes", "accessibility", mode="before")
    @classmethod
    def normalize_list(cls, v: Any) -> list[Any]:  # noqa: ANN401
        return [item for item in as_list(v) if isinstance(item, dict)]


# ==================== Reduced speed zones ====================


class RszZone(BaseModel):
    """One row of the reduced speed zone tables."""

    line: str
    direction: str
    stop_start: str
    stop_end: str
    location: str
    defect_length: int | None = None  # metres
    distance_between_stations: int | None = None  # metres
    track_percent: int | None = None
    reduced_speed: int | None = None  # km/h
    normal_speed: int | None = None  # km/h
    reason: str | None = None
    target_removal: str | None = None


# ==================== Scheduled closures ====================


class MaintenanceItem(BaseModel):
    """A scheduled closure parsed from a service-changes search result."""

    maintenance_key: str
    upstream_id: str | None = None
    routes: list[str]
    route_name: str | None = None
    title: str
    url: str | None = None
    start_date_text: str | None = None
    end_date_text: str | None = None
    starts_at: datetime
    ends_at: datetime | None = None
