"""Incident thread and alert models."""

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ttc_incidents.models.base import Base, TimestampMixin


class AlertSource(str, enum.Enum):
    """Upstream feed an alert or thread originated from."""

    LIVE = "live"
    RSZ = "rsz"
    ELEVATOR = "elevator"


class ThreadStatus(str, enum.Enum):
    """Lifecycle state derived from the resolved/hidden flags."""

    OPEN = "open"
    RESOLVED = "resolved"
    HIDDEN = "hidden"


def _source_enum() -> Enum:
    return Enum(
        AlertSource,
        name="alert_source",
        create_constraint=True,
        values_callable=lambda x: [e.value for e in x],
    )


class IncidentThread(Base, TimestampMixin):
    """
    A real-world disruption spanning one or more alerts over time.

    The primary key is the deterministic thread key, so the same incident
    maps to the same row on every poll. ``is_resolved`` and ``is_hidden``
    are stored separately because a resolved thread stays visible until the
    upstream stops reporting it.
    """

    __tablename__ = "incident_threads"

    thread_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    source: Mapped[AlertSource] = mapped_column(_source_enum(), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    affected_routes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    categories: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="major")
    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    missed_polls: Mapped[int] = mapped_column(
        Integer,  # Consecutive polls the thread was absent from its source
        nullable=False,
        default=0,
    )

    alerts: Mapped[list["Alert"]] = relationship(
        back_populates="thread",
        order_by="Alert.created_at",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_incident_threads_source_visible", "source", "is_hidden"),
        Index("ix_incident_threads_updated_at", "updated_at"),
    )

    @property
    def status(self) -> ThreadStatus:
        """Explicit open/resolved/hidden state."""
        if self.is_hidden:
            return ThreadStatus.HIDDEN
        if self.is_resolved:
            return ThreadStatus.RESOLVED
        return ThreadStatus.OPEN

    def __repr__(self) -> str:
        """String representation of the thread."""
        return f"<IncidentThread(thread_id={self.thread_id}, status={self.status.value})>"


class Alert(Base, TimestampMixin):
    """
    One immutable observation of service state.

    Only ``thread_id`` and ``is_latest`` change after insert.
    """

    __tablename__ = "alert_cache"

    alert_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    thread_id: Mapped[str | None] = mapped_column(
        String(255),
        ForeignKey("incident_threads.thread_id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    source: Mapped[AlertSource] = mapped_column(_source_enum(), nullable=False)
    header_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    description_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    effect: Mapped[str] = mapped_column(String(50), nullable=False, default="UNKNOWN_EFFECT")
    cause: Mapped[str | None] = mapped_column(String(100), nullable=True)
    categories: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    affected_routes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="major")
    is_latest: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    active_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    active_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    raw_data: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,  # Upstream payload, kept so failed writes can be replayed
        nullable=True,
    )

    thread: Mapped[IncidentThread | None] = relationship(back_populates="alerts")

    __table_args__ = (
        Index("ix_alert_cache_thread_latest", "thread_id", "is_latest"),
        Index("ix_alert_cache_created_at", "created_at"),
        Index("ix_alert_cache_effect", "effect"),
    )

    def __repr__(self) -> str:
        """String representation of the alert."""
        return f"<Alert(alert_id={self.alert_id}, thread_id={self.thread_id}, is_latest={self.is_latest})>"
