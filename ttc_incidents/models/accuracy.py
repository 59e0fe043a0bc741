"""Alert accuracy monitoring models."""

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Date, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ttc_incidents.models.base import BaseModel


class AlertAccuracyLog(BaseModel):
    """Raw result of one accuracy check, kept for incident forensics."""

    __tablename__ = "alert_accuracy_logs"

    checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    upstream_count: Mapped[int] = mapped_column(Integer, nullable=False)
    stored_count: Mapped[int] = mapped_column(Integer, nullable=False)
    matched_count: Mapped[int] = mapped_column(Integer, nullable=False)
    completeness: Mapped[float] = mapped_column(Float, nullable=False)
    precision: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    missing_alerts: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    stale_alerts: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    trace_id: Mapped[str | None] = mapped_column(String(32), nullable=True)

    __table_args__ = (Index("ix_alert_accuracy_logs_checked_at", "checked_at"),)


class AlertAccuracyReport(BaseModel):
    """Daily aggregate of accuracy checks (running averages)."""

    __tablename__ = "alert_accuracy_reports"

    report_date: Mapped[date] = mapped_column(Date, unique=True, nullable=False, index=True)
    checks_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_completeness: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    avg_precision: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_missing: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_stale: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_status: Mapped[str] = mapped_column(String(20), nullable=False, default="healthy")

    def __repr__(self) -> str:
        """String representation of the report."""
        return f"<AlertAccuracyReport(date={self.report_date}, checks={self.checks_count})>"
