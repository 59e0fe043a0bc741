"""Pydantic schemas for alerts, incident threads and ingestion results."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ttc_incidents.helpers.categorization import AlertCategory
from ttc_incidents.models.incident import AlertSource, ThreadStatus

# ==================== Engine Input ====================


class NormalizedAlert(BaseModel):
    """Canonical alert produced by the normalizer from any upstream shape."""

    alert_id: str
    thread_id: str
    source: AlertSource
    header_text: str
    description_text: str | None = None
    effect: str = "UNKNOWN_EFFECT"
    cause: str | None = None
    categories: list[str] = Field(default_factory=list)
    affected_routes: list[str] = Field(default_factory=list)
    severity: str = "major"
    active_period_start: datetime | None = None
    active_period_end: datetime | None = None
    raw_data: dict[str, Any] | None = None
    used_fallback_key: bool = False  # Elevator key derived without an equipment code

    @property
    def is_resumed(self) -> bool:
        return AlertCategory.SERVICE_RESUMED.value in self.categories


# ==================== Engine Output ====================


class AlertFailure(BaseModel):
    """An alert whose write failed; enough context to replay it."""

    alert_id: str
    thread_id: str
    error: str


class IngestionResult(BaseModel):
    """Outcome of feeding one source's batch through the threading engine."""

    source: AlertSource
    fetched: bool = True
    received: int = 0
    created_threads: int = 0
    created_alerts: int = 0
    duplicate_alerts: int = 0
    resolved_threads: int = 0
    reopened_threads: int = 0
    unhidden_threads: int = 0
    relinked_alerts: int = 0
    hidden_threads: int = 0
    fallback_keys: int = 0
    failures: list[AlertFailure] = Field(default_factory=list)


class PassResult(BaseModel):
    """Outcome of one full ingestion pass across all sources."""

    started_at: datetime
    finished_at: datetime
    sources: list[IngestionResult]
    skipped_records: int = 0

    @property
    def failure_count(self) -> int:
        return sum(len(result.failures) for result in self.sources)


# ==================== Response Schemas ====================


class AlertResponse(BaseModel):
    """Response schema for a stored alert."""

    model_config = ConfigDict(from_attributes=True)

    alert_id: str
    thread_id: str | None
    source: AlertSource
    header_text: str
    description_text: str | None
    effect: str
    cause: str | None
    categories: list[str]
    affected_routes: list[str]
    severity: str
    is_latest: bool
    active_period_start: datetime | None
    active_period_end: datetime | None
    created_at: datetime
    updated_at: datetime


class ThreadResponse(BaseModel):
    """Response schema for an incident thread."""

    model_config = ConfigDict(from_attributes=True)

    thread_id: str
    source: AlertSource
    title: str
    affected_routes: list[str]
    categories: list[str]
    severity: str
    status: ThreadStatus
    is_resolved: bool
    is_hidden: bool
    resolved_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ThreadDetailResponse(ThreadResponse):
    """Thread with its alerts, oldest first."""

    alerts: list[AlertResponse]


class ThreadGroupResponse(BaseModel):
    """Threads grouped for display because their base routes overlap."""

    base_routes: list[str] = Field(..., description="Union of base routes across the group")
    threads: list[ThreadResponse]
