"""create_incident_tables

Revision ID: 0f3a9c2d7b41
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0f3a9c2d7b41"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

alert_source = postgresql.ENUM("live", "rsz", "elevator", name="alert_source", create_type=False)


def upgrade() -> None:
    """Upgrade schema."""
    alert_source.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "incident_threads",
        sa.Column("thread_id", sa.String(length=255), nullable=False, comment="Deterministic thread key"),
        sa.Column("source", alert_source, nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("affected_routes", sa.JSON(), nullable=False),
        sa.Column("categories", sa.JSON(), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("is_resolved", sa.Boolean(), nullable=False),
        sa.Column("is_hidden", sa.Boolean(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "missed_polls",
            sa.Integer(),
            nullable=False,
            server_default="0",
            comment="Consecutive polls the thread was absent from its source",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("thread_id"),
    )
    op.create_index("ix_incident_threads_source_visible", "incident_threads", ["source", "is_hidden"])
    op.create_index("ix_incident_threads_updated_at", "incident_threads", ["updated_at"])

    op.create_table(
        "alert_cache",
        sa.Column("alert_id", sa.String(length=255), nullable=False, comment="Deterministic alert key"),
        sa.Column("thread_id", sa.String(length=255), nullable=True),
        sa.Column("source", alert_source, nullable=False),
        sa.Column("header_text", sa.Text(), nullable=False),
        sa.Column("description_text", sa.Text(), nullable=True),
        sa.Column("effect", sa.String(length=50), nullable=False),
        sa.Column("cause", sa.String(length=100), nullable=True),
        sa.Column("categories", sa.JSON(), nullable=False),
        sa.Column("affected_routes", sa.JSON(), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("is_latest", sa.Boolean(), nullable=False),
        sa.Column("active_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("raw_data", sa.JSON(), nullable=True, comment="Upstream payload for replaying failed writes"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["thread_id"], ["incident_threads.thread_id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("alert_id"),
    )
    op.create_index("ix_alert_cache_thread_id", "alert_cache", ["thread_id"])
    op.create_index("ix_alert_cache_thread_latest", "alert_cache", ["thread_id", "is_latest"])
    op.create_index("ix_alert_cache_created_at", "alert_cache", ["created_at"])
    op.create_index("ix_alert_cache_effect", "alert_cache", ["effect"])

    op.create_table(
        "planned_maintenance",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column(
            "maintenance_key",
            sa.String(length=64),
            nullable=False,
            comment="SHA256 of {routes, title, start date} for deduplication",
        ),
        sa.Column("upstream_id", sa.String(length=100), nullable=True),
        sa.Column("routes", sa.JSON(), nullable=False),
        sa.Column("route_name", sa.String(length=255), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("url", sa.String(length=500), nullable=True),
        sa.Column("start_date_text", sa.String(length=100), nullable=True),
        sa.Column("end_date_text", sa.String(length=100), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_planned_maintenance_maintenance_key", "planned_maintenance", ["maintenance_key"], unique=True
    )
    op.create_index("ix_planned_maintenance_active_start", "planned_maintenance", ["is_active", "starts_at"])

    op.create_table(
        "alert_accuracy_logs",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("upstream_count", sa.Integer(), nullable=False),
        sa.Column("stored_count", sa.Integer(), nullable=False),
        sa.Column("matched_count", sa.Integer(), nullable=False),
        sa.Column("completeness", sa.Float(), nullable=False),
        sa.Column("precision", sa.Float(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("missing_alerts", sa.JSON(), nullable=False),
        sa.Column("stale_alerts", sa.JSON(), nullable=False),
        sa.Column("trace_id", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_alert_accuracy_logs_checked_at", "alert_accuracy_logs", ["checked_at"])

    op.create_table(
        "alert_accuracy_reports",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("report_date", sa.Date(), nullable=False),
        sa.Column("checks_count", sa.Integer(), nullable=False),
        sa.Column("avg_completeness", sa.Float(), nullable=False),
        sa.Column("avg_precision", sa.Float(), nullable=False),
        sa.Column("total_missing", sa.Integer(), nullable=False),
        sa.Column("total_stale", sa.Integer(), nullable=False),
        sa.Column("last_status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_alert_accuracy_reports_report_date", "alert_accuracy_reports", ["report_date"], unique=True
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_alert_accuracy_reports_report_date", table_name="alert_accuracy_reports")
    op.drop_table("alert_accuracy_reports")

    op.drop_index("ix_alert_accuracy_logs_checked_at", table_name="alert_accuracy_logs")
    op.drop_table("alert_accuracy_logs")

    op.drop_index("ix_planned_maintenance_active_start", table_name="planned_maintenance")
    op.drop_index("ix_planned_maintenance_maintenance_key", table_name="planned_maintenance")
    op.drop_table("planned_maintenance")

    op.drop_index("ix_alert_cache_effect", table_name="alert_cache")
    op.drop_index("ix_alert_cache_created_at", table_name="alert_cache")
    op.drop_index("ix_alert_cache_thread_latest", table_name="alert_cache")
    op.drop_index("ix_alert_cache_thread_id", table_name="alert_cache")
    op.drop_table("alert_cache")

    op.drop_index("ix_incident_threads_updated_at", table_name="incident_threads")
    op.drop_index("ix_incident_threads_source_visible", table_name="incident_threads")
    op.drop_table("incident_threads")

    alert_source.drop(op.get_bind(), checkfirst=True)
