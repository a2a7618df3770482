"""Initial field operations schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

guard_lifecycle_status = postgresql.ENUM(
    "applicant",
    "selected",
    "hired",
    "terminated",
    "blacklisted",
    name="guard_lifecycle_status",
    create_type=False,
)
clock_event_type = postgresql.ENUM("entry", "exit", name="clock_event_type", create_type=False)
daily_attendance_status = postgresql.ENUM(
    "pending",
    "present",
    "absent",
    "replaced",
    name="daily_attendance_status",
    create_type=False,
)
patrol_execution_status = postgresql.ENUM(
    "pending",
    "in_progress",
    "completed",
    "partial",
    "suspicious",
    name="patrol_execution_status",
    create_type=False,
)
patrol_alert_severity = postgresql.ENUM(
    "info",
    "novelty",
    "critical",
    name="patrol_alert_severity",
    create_type=False,
)
audit_actor_type = postgresql.ENUM("GUARD", "ADMIN", "SYSTEM", name="audit_actor_type", create_type=False)

ENUM_TYPES = (
    guard_lifecycle_status,
    clock_event_type,
    daily_attendance_status,
    patrol_execution_status,
    patrol_alert_severity,
    audit_actor_type,
)


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def _jsonb(name: str) -> sa.Column:
    return sa.Column(
        name,
        postgresql.JSONB(astext_type=sa.Text()),
        nullable=False,
        server_default=sa.text("'{}'::jsonb"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        _jsonb("clock_config"),
        _created_at(),
    )

    op.create_table(
        "guards",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("national_id", sa.String(length=16), nullable=False),
        sa.Column("first_name", sa.String(length=255), nullable=False),
        sa.Column("last_name", sa.String(length=255), nullable=False, server_default=sa.text("''")),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("lifecycle_status", guard_lifecycle_status, nullable=False, server_default="applicant"),
        sa.Column("is_blacklisted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pin_hash", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("tenant_id", "national_id", name="uq_guards_tenant_national_id"),
    )
    op.create_index("ix_guards_tenant_id", "guards", ["tenant_id"])

    op.create_table(
        "installations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("site_code", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),
        sa.Column("geofence_radius_m", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_installations_tenant_id", "installations", ["tenant_id"])
    op.create_index("ix_installations_site_code", "installations", ["site_code"], unique=True)

    op.create_table(
        "guard_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("guard_id", sa.Integer(), nullable=False),
        sa.Column("installation_id", sa.Integer(), nullable=False),
        sa.Column("slot_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("shift_start", sa.String(length=5), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["guard_id"], ["guards.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["installation_id"], ["installations.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_guard_assignments_guard_id", "guard_assignments", ["guard_id"])
    op.create_index("ix_guard_assignments_installation_id", "guard_assignments", ["installation_id"])

    op.create_table(
        "clock_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("guard_id", sa.Integer(), nullable=False),
        sa.Column("installation_id", sa.Integer(), nullable=False),
        sa.Column("assignment_id", sa.Integer(), nullable=True),
        sa.Column("type", clock_event_type, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("local_day", sa.Date(), nullable=False),
        sa.Column("sequence_no", sa.Integer(), nullable=False),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lng", sa.Float(), nullable=False),
        sa.Column("geofence_validated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("distance_m", sa.Integer(), nullable=True),
        sa.Column("method_id", sa.String(length=32), nullable=False),
        sa.Column("integrity_hash", sa.String(length=64), nullable=False),
        sa.Column("lateness_minutes", sa.Integer(), nullable=True),
        sa.Column("evidence_photo_ref", sa.String(length=255), nullable=True),
        sa.Column("ip_address", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["guard_id"], ["guards.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["installation_id"], ["installations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assignment_id"], ["guard_assignments.id"], ondelete="SET NULL"),
        sa.UniqueConstraint(
            "guard_id",
            "installation_id",
            "local_day",
            "sequence_no",
            name="uq_clock_events_guard_site_day_seq",
        ),
    )
    op.create_index("ix_clock_events_tenant_id", "clock_events", ["tenant_id"])
    op.create_index("ix_clock_events_guard_id", "clock_events", ["guard_id"])
    op.create_index("ix_clock_events_installation_id", "clock_events", ["installation_id"])
    op.create_index("ix_clock_events_timestamp", "clock_events", ["timestamp"])

    op.create_table(
        "daily_attendance",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("installation_id", sa.Integer(), nullable=False),
        sa.Column("slot_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("planned_guard_id", sa.Integer(), nullable=True),
        sa.Column("actual_guard_id", sa.Integer(), nullable=True),
        sa.Column("status", daily_attendance_status, nullable=False, server_default="pending"),
        sa.Column("check_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_in_event_id", sa.Integer(), nullable=True),
        sa.Column("check_out_event_id", sa.Integer(), nullable=True),
        _created_at("updated_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["installation_id"], ["installations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["planned_guard_id"], ["guards.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["actual_guard_id"], ["guards.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["check_in_event_id"], ["clock_events.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["check_out_event_id"], ["clock_events.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("installation_id", "slot_number", "date", name="uq_daily_attendance_slot_day"),
    )
    op.create_index("ix_daily_attendance_tenant_id", "daily_attendance", ["tenant_id"])
    op.create_index("ix_daily_attendance_installation_id", "daily_attendance", ["installation_id"])
    op.create_index("ix_daily_attendance_date", "daily_attendance", ["date"])

    op.create_table(
        "patrol_templates",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("installation_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["installation_id"], ["installations.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_patrol_templates_tenant_id", "patrol_templates", ["tenant_id"])
    op.create_index("ix_patrol_templates_installation_id", "patrol_templates", ["installation_id"])

    op.create_table(
        "patrol_checkpoints",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("template_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=sa.text("''")),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expected_offset_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["template_id"], ["patrol_templates.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("template_id", "code", name="uq_patrol_checkpoints_template_code"),
    )
    op.create_index("ix_patrol_checkpoints_template_id", "patrol_checkpoints", ["template_id"])

    op.create_table(
        "patrol_executions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("template_id", sa.Integer(), nullable=False),
        sa.Column("guard_id", sa.Integer(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", patrol_execution_status, nullable=False, server_default="pending"),
        sa.Column("checkpoints_total", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("marks_recorded", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("completion_pct", sa.Float(), nullable=True),
        sa.Column("trust_score", sa.Float(), nullable=True),
        _jsonb("device_info"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["template_id"], ["patrol_templates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["guard_id"], ["guards.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_patrol_executions_tenant_id", "patrol_executions", ["tenant_id"])
    op.create_index("ix_patrol_executions_template_id", "patrol_executions", ["template_id"])
    op.create_index("ix_patrol_executions_scheduled_at", "patrol_executions", ["scheduled_at"])

    op.create_table(
        "checkpoint_marks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("execution_id", sa.Integer(), nullable=False),
        sa.Column("checkpoint_id", sa.Integer(), nullable=False),
        sa.Column("client_mark_id", sa.String(length=64), nullable=True),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lng", sa.Float(), nullable=False),
        sa.Column("battery_level", sa.Float(), nullable=True),
        sa.Column("motion_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["execution_id"], ["patrol_executions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["checkpoint_id"], ["patrol_checkpoints.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("execution_id", "checkpoint_id", name="uq_checkpoint_marks_execution_checkpoint"),
        sa.UniqueConstraint("execution_id", "client_mark_id", name="uq_checkpoint_marks_execution_client_id"),
    )
    op.create_index("ix_checkpoint_marks_execution_id", "checkpoint_marks", ["execution_id"])

    op.create_table(
        "patrol_alerts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("execution_id", sa.Integer(), nullable=False),
        sa.Column("installation_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column("severity", patrol_alert_severity, nullable=False),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),
        sa.Column("message", sa.String(length=1000), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["execution_id"], ["patrol_executions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["installation_id"], ["installations.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_patrol_alerts_tenant_id", "patrol_alerts", ["tenant_id"])
    op.create_index("ix_patrol_alerts_execution_id", "patrol_alerts", ["execution_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _created_at("ts_utc"),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _jsonb("details"),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("patrol_alerts")
    op.drop_table("checkpoint_marks")
    op.drop_table("patrol_executions")
    op.drop_table("patrol_checkpoints")
    op.drop_table("patrol_templates")
    op.drop_table("daily_attendance")
    op.drop_table("clock_events")
    op.drop_table("guard_assignments")
    op.drop_table("installations")
    op.drop_table("guards")
    op.drop_table("tenants")

    bind = op.get_bind()
    for enum_type in reversed(ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)
