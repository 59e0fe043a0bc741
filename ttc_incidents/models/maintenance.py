"""Planned maintenance / scheduled closure model."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ttc_incidents.models.base import BaseModel


class PlannedMaintenance(BaseModel):
    """A dated closure scraped from the service-changes search.

    Lives outside the threading engine: rows are upserted by a content hash
    and deactivated when their end passes or they disappear from the scrape.
    """

    __tablename__ = "planned_maintenance"

    maintenance_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    upstream_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    routes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    route_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    start_date_text: Mapped[str | None] = mapped_column(String(100), nullable=True)
    end_date_text: Mapped[str | None] = mapped_column(String(100), nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_planned_maintenance_active_start", "is_active", "starts_at"),)

    def __repr__(self) -> str:
        """String representation of the closure."""
        return f"<PlannedMaintenance(key={self.maintenance_key[:12]}, title={self.title!r}, active={self.is_active})>"
