"""Pydantic schemas for admin endpoints: reconciliation, accuracy, retention."""

import enum
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VerificationTarget(str, enum.Enum):
    """Thread category a reconciliation verifier is responsible for."""

    DISRUPTIONS = "disruptions"
    ACCESSIBILITY = "accessibility"
    RSZ = "rsz"


class AccuracyStatus(str, enum.Enum):
    """Alerting status of an accuracy check."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class VerificationReport(BaseModel):
    """Diff between the upstream snapshot and stored visible threads."""

    target: VerificationTarget
    success: bool = Field(..., description="Post-correction visible count equals upstream count")
    checked_at: datetime
    upstream_count: int = Field(0, description="Distinct thread keys active upstream")
    database_count: int = Field(0, description="Visible stored threads before corrections")
    final_count: int = Field(0, description="Visible stored threads after corrections")
    missing_in_db: list[str] = Field(default_factory=list, description="Upstream keys with no open visible thread")
    stale_in_db: list[str] = Field(default_factory=list, description="Visible threads absent upstream")
    hidden_but_active: list[str] = Field(default_factory=list, description="Hidden or resolved threads active upstream")
    created: list[str] = Field(default_factory=list)
    unhidden: list[str] = Field(default_factory=list)
    hidden: list[str] = Field(default_factory=list)
    summary: str = ""
    error: str | None = None


class MatchDetail(BaseModel):
    """An alert present on only one side of an accuracy comparison."""

    route: str | None
    text: str


class AccuracyCheckResult(BaseModel):
    """Raw result of one accuracy check."""

    checked_at: datetime
    upstream_count: int
    stored_count: int
    matched_count: int
    completeness: float = Field(..., description="matched / upstream, percent")
    precision: float = Field(..., description="matched / stored, percent")
    status: AccuracyStatus
    missing_alerts: list[MatchDetail] = Field(default_factory=list)
    stale_alerts: list[MatchDetail] = Field(default_factory=list)


class AccuracyReportResponse(BaseModel):
    """Daily accuracy aggregate."""

    model_config = ConfigDict(from_attributes=True)

    report_date: date
    checks_count: int
    avg_completeness: float
    avg_precision: float
    total_missing: int
    total_stale: int
    last_status: str

    @field_validator("avg_completeness", "avg_precision")
    @classmethod
    def round_percent(cls, v: float) -> float:
        return round(v, 2)


class CleanupResult(BaseModel):
    """Rows removed or changed by one retention run."""

    deleted_alerts: int = 0
    unlinked_alerts: int = 0
    deleted_threads: int = 0
    deactivated_maintenance: int = 0


class MaintenanceSyncResult(BaseModel):
    """Outcome of one scheduled-closure scrape."""

    scraped: int = 0
    upserted: int = 0
    deactivated: int = 0
    skipped: int = 0


class MaintenanceResponse(BaseModel):
    """Response schema for a scheduled closure."""

    model_config = ConfigDict(from_attributes=True)

    maintenance_key: str
    routes: list[str]
    route_name: str | None
    title: str
    url: str | None
    start_date_text: str | None
    end_date_text: str | None
    starts_at: datetime
    ends_at: datetime | None
    is_active: bool


class TriggerResponse(BaseModel):
    """Generic response for synchronously triggered passes."""

    success: bool
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
