from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldops.db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class ClockEventType(str, enum.Enum):
    ENTRY = "entry"
    EXIT = "exit"


class GuardLifecycleStatus(str, enum.Enum):
    APPLICANT = "applicant"
    SELECTED = "selected"
    HIRED = "hired"
    TERMINATED = "terminated"
    BLACKLISTED = "blacklisted"


ACTIVE_LIFECYCLE_STATUSES = frozenset({GuardLifecycleStatus.SELECTED, GuardLifecycleStatus.HIRED})


class DailyAttendanceStatus(str, enum.Enum):
    PENDING = "pending"
    PRESENT = "present"
    ABSENT = "absent"
    REPLACED = "replaced"


class PatrolExecutionStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PARTIAL = "partial"
    SUSPICIOUS = "suspicious"


TERMINAL_EXECUTION_STATUSES = frozenset(
    {
        PatrolExecutionStatus.COMPLETED,
        PatrolExecutionStatus.PARTIAL,
        PatrolExecutionStatus.SUSPICIOUS,
    }
)


class AlertSeverity(str, enum.Enum):
    INFO = "info"
    NOVELTY = "novelty"
    CRITICAL = "critical"


class AuditActorType(str, enum.Enum):
    GUARD = "GUARD"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    clock_config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    installations: Mapped[list[Installation]] = relationship(back_populates="tenant")
    guards: Mapped[list[Guard]] = relationship(back_populates="tenant")


class Guard(Base):
    __tablename__ = "guards"
    __table_args__ = (UniqueConstraint("tenant_id", "national_id", name="uq_guards_tenant_national_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    national_id: Mapped[str] = mapped_column(String(16), nullable=False)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    lifecycle_status: Mapped[GuardLifecycleStatus] = mapped_column(
        Enum(GuardLifecycleStatus, name="guard_lifecycle_status", values_callable=_enum_values),
        nullable=False,
        default=GuardLifecycleStatus.APPLICANT,
    )
    is_blacklisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    pin_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)

    tenant: Mapped[Tenant] = relationship(back_populates="guards")
    assignments: Mapped[list[GuardAssignment]] = relationship(back_populates="guard")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class Installation(Base):
    __tablename__ = "installations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    site_code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    geofence_radius_m: Mapped[int] = mapped_column(Integer, nullable=False, default=100, server_default=text("100"))

    tenant: Mapped[Tenant] = relationship(back_populates="installations")
    assignments: Mapped[list[GuardAssignment]] = relationship(back_populates="installation")
    patrol_templates: Mapped[list[PatrolTemplate]] = relationship(back_populates="installation")

    @property
    def has_geofence(self) -> bool:
        return self.lat is not None and self.lng is not None


class GuardAssignment(Base):
    __tablename__ = "guard_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    guard_id: Mapped[int] = mapped_column(ForeignKey("guards.id", ondelete="CASCADE"), nullable=False, index=True)
    installation_id: Mapped[int] = mapped_column(
        ForeignKey("installations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    slot_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))
    shift_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    guard: Mapped[Guard] = relationship(back_populates="assignments")
    installation: Mapped[Installation] = relationship(back_populates="assignments")


class ClockEvent(Base):
    __tablename__ = "clock_events"
    __table_args__ = (
        UniqueConstraint(
            "guard_id",
            "installation_id",
            "local_day",
            "sequence_no",
            name="uq_clock_events_guard_site_day_seq",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    guard_id: Mapped[int] = mapped_column(ForeignKey("guards.id", ondelete="CASCADE"), nullable=False, index=True)
    installation_id: Mapped[int] = mapped_column(
        ForeignKey("installations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assignment_id: Mapped[int | None] = mapped_column(
        ForeignKey("guard_assignments.id", ondelete="SET NULL"),
        nullable=True,
    )
    type: Mapped[ClockEventType] = mapped_column(
        Enum(ClockEventType, name="clock_event_type", values_callable=_enum_values),
        nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    local_day: Mapped[date] = mapped_column(Date, nullable=False)
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    geofence_validated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    distance_m: Mapped[int | None] = mapped_column(Integer, nullable=True)
    method_id: Mapped[str] = mapped_column(String(32), nullable=False)
    integrity_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    lateness_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    evidence_photo_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    guard: Mapped[Guard] = relationship()
    installation: Mapped[Installation] = relationship()


class DailyAttendance(Base):
    __tablename__ = "daily_attendance"
    __table_args__ = (
        UniqueConstraint("installation_id", "slot_number", "date", name="uq_daily_attendance_slot_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    installation_id: Mapped[int] = mapped_column(
        ForeignKey("installations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    slot_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    planned_guard_id: Mapped[int | None] = mapped_column(ForeignKey("guards.id", ondelete="SET NULL"), nullable=True)
    actual_guard_id: Mapped[int | None] = mapped_column(ForeignKey("guards.id", ondelete="SET NULL"), nullable=True)
    status: Mapped[DailyAttendanceStatus] = mapped_column(
        Enum(DailyAttendanceStatus, name="daily_attendance_status", values_callable=_enum_values),
        nullable=False,
        default=DailyAttendanceStatus.PENDING,
    )
    check_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_in_event_id: Mapped[int | None] = mapped_column(
        ForeignKey("clock_events.id", ondelete="SET NULL"),
        nullable=True,
    )
    check_out_event_id: Mapped[int | None] = mapped_column(
        ForeignKey("clock_events.id", ondelete="SET NULL"),
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class PatrolTemplate(Base):
    __tablename__ = "patrol_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    installation_id: Mapped[int] = mapped_column(
        ForeignKey("installations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    installation: Mapped[Installation] = relationship(back_populates="patrol_templates")
    checkpoints: Mapped[list[PatrolCheckpoint]] = relationship(
        back_populates="template",
        order_by="PatrolCheckpoint.position",
        cascade="all, delete-orphan",
    )
    executions: Mapped[list[PatrolExecution]] = relationship(back_populates="template")


class PatrolCheckpoint(Base):
    __tablename__ = "patrol_checkpoints"
    __table_args__ = (UniqueConstraint("template_id", "code", name="uq_patrol_checkpoints_template_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("patrol_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expected_offset_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    geo_radius_m: Mapped[int] = mapped_column(Integer, nullable=False, default=30, server_default=text("30"))

    template: Mapped[PatrolTemplate] = relationship(back_populates="checkpoints")

    @property
    def has_geofence(self) -> bool:
        return self.lat is not None and self.lng is not None


class PatrolExecution(Base):
    __tablename__ = "patrol_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("patrol_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    guard_id: Mapped[int | None] = mapped_column(ForeignKey("guards.id", ondelete="SET NULL"), nullable=True)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    status: Mapped[PatrolExecutionStatus] = mapped_column(
        Enum(PatrolExecutionStatus, name="patrol_execution_status", values_callable=_enum_values),
        nullable=False,
        default=PatrolExecutionStatus.PENDING,
    )
    checkpoints_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    marks_recorded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    trust_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    device_info: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    template: Mapped[PatrolTemplate] = relationship(back_populates="executions")
    guard: Mapped[Guard | None] = relationship()
    marks: Mapped[list[CheckpointMark]] = relationship(
        back_populates="execution",
        order_by="CheckpointMark.id",
    )
    alerts: Mapped[list[PatrolAlert]] = relationship(back_populates="execution")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EXECUTION_STATUSES


class CheckpointMark(Base):
    __tablename__ = "checkpoint_marks"
    __table_args__ = (
        UniqueConstraint("execution_id", "checkpoint_id", name="uq_checkpoint_marks_execution_checkpoint"),
        UniqueConstraint("execution_id", "client_mark_id", name="uq_checkpoint_marks_execution_client_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    execution_id: Mapped[int] = mapped_column(
        ForeignKey("patrol_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    checkpoint_id: Mapped[int] = mapped_column(
        ForeignKey("patrol_checkpoints.id", ondelete="CASCADE"),
        nullable=False,
    )
    client_mark_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    battery_level: Mapped[float | None] = mapped_column(Float, nullable=True)
    motion_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    geo_validated: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    geo_distance_m: Mapped[int | None] = mapped_column(Integer, nullable=True)
    speed_from_prev_kmh: Mapped[float | None] = mapped_column(Float, nullable=True)
    time_from_prev_s: Mapped[int | None] = mapped_column(Integer, nullable=True)
    anomalies: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    execution: Mapped[PatrolExecution] = relationship(back_populates="marks")
    checkpoint: Mapped[PatrolCheckpoint] = relationship()


class PatrolAlert(Base):
    __tablename__ = "patrol_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    execution_id: Mapped[int] = mapped_column(
        ForeignKey("patrol_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    installation_id: Mapped[int] = mapped_column(
        ForeignKey("installations.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    severity: Mapped[AlertSeverity] = mapped_column(
        Enum(AlertSeverity, name="patrol_alert_severity", values_callable=_enum_values),
        nullable=False,
    )
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    message: Mapped[str] = mapped_column(String(1000), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    execution: Mapped[PatrolExecution] = relationship(back_populates="alerts")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
