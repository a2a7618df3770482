from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fieldops.models import AlertSeverity, ClockEventType, PatrolExecutionStatus


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class DevicePayload(ApiModel):
    """Inbound device/sensor payloads: unknown keys and string-typed numbers are rejected."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class CredentialsRequest(DevicePayload):
    site_code: str = Field(min_length=1, max_length=64)
    national_id: str = Field(min_length=3, max_length=16)
    pin: str = Field(min_length=4, max_length=12)


class ClockEventCreate(CredentialsRequest):
    type: ClockEventType
    lat: float = Field(ge=-90, le=90, strict=True)
    lng: float = Field(ge=-180, le=180, strict=True)
    evidence_photo: str | None = Field(default=None, max_length=8_000_000)


class ClockEventRead(ApiModel):
    id: int
    type: ClockEventType
    timestamp: datetime
    geofence_validated: bool
    distance_m: int | None = Field(default=None, alias="distanceMeters")
    guard_name: str
    installation_name: str
    integrity_hash: str
    lateness_minutes: int | None = None


class CredentialCheckRead(ApiModel):
    guard_name: str
    installation_name: str
    last_event_type: ClockEventType | None = None
    next_event_type: ClockEventType


class IntegrityAuditRead(ApiModel):
    date_from: date
    date_to: date
    checked: int
    mismatched: int
    mismatched_ids: list[int] = Field(default_factory=list)
    ok: bool


class GuardSessionRead(ApiModel):
    guard_name: str
    installation_name: str


class CheckpointRead(ApiModel):
    code: str
    name: str
    position: int
    expected_offset_minutes: int


class PendingExecutionRead(ApiModel):
    id: int
    template_name: str
    scheduled_at: datetime
    status: PatrolExecutionStatus
    checkpoints: list[CheckpointRead] = Field(default_factory=list)
    marked_codes: list[str] = Field(default_factory=list)


class PendingListRead(ApiModel):
    guard_name: str
    installation_name: str
    executions: list[PendingExecutionRead] = Field(default_factory=list)


class DeviceInfo(DevicePayload):
    user_agent: str | None = Field(default=None, max_length=512)
    platform: str | None = Field(default=None, max_length=64)
    battery_level: float | None = Field(default=None, ge=0, le=100, strict=True)


class PatrolStartRequest(CredentialsRequest):
    execution_id: int = Field(ge=1, strict=True)
    device_info: DeviceInfo = Field(default_factory=DeviceInfo)


class PatrolStartRead(ApiModel):
    execution_id: int
    status: PatrolExecutionStatus
    started_at: datetime
    checkpoints_total: int


class MarkCheckpointRequest(DevicePayload):
    execution_id: int = Field(ge=1, strict=True)
    checkpoint_code: str = Field(min_length=1, max_length=128)
    lat: float = Field(ge=-90, le=90, strict=True)
    lng: float = Field(ge=-180, le=180, strict=True)
    battery_level: float | None = Field(default=None, ge=0, le=100, strict=True)
    motion_score: float = Field(default=0.0, ge=0, le=10, strict=True)
    client_mark_id: str | None = Field(default=None, min_length=1, max_length=64)


class MarkCheckpointRead(ApiModel):
    mark_id: int
    checkpoint_code: str
    scanned_at: datetime
    duplicate: bool
    marks_recorded: int
    checkpoints_total: int
    geo_validated: bool | None = None
    anomalies: list[str] = Field(default_factory=list)


class ExecutionRequest(DevicePayload):
    execution_id: int = Field(ge=1, strict=True)


class PatrolCompleteRead(ApiModel):
    execution_id: int
    status: PatrolExecutionStatus
    trust_score: float
    completion_pct: float
    marks_recorded: int
    checkpoints_total: int


class PanicRequest(ExecutionRequest):
    lat: float | None = Field(default=None, ge=-90, le=90, strict=True)
    lng: float | None = Field(default=None, ge=-180, le=180, strict=True)


class PanicRead(ApiModel):
    alert_id: int
    severity: AlertSeverity
    created_at: datetime


class InstallationKpiRead(ApiModel):
    installation_id: int
    installation_name: str
    total_checks: int
    completed: int
    omitted: int
    compliance: float
    avg_deviation_min: float
    execution_count: int
    novelties: int
    criticals: int
    alert: bool
    attendance_checks: int
    patrol_checks: int


class KpiGlobalRead(ApiModel):
    total_checks: int
    completed: int
    omitted: int
    compliance: float
    alert_count: int
    critical_count: int
    avg_deviation_min: float
    attendance_checks: int = 0
    patrol_checks: int = 0


class WeeklyTrendRead(ApiModel):
    week_label: str
    week_start: date
    compliance: float
    total_checks: int
    completed: int


class KpiPeriodRead(ApiModel):
    date_from: date = Field(alias="from")
    date_to: date = Field(alias="to")
    execution_count: int


class KpiAggregateRead(ApiModel):
    period: KpiPeriodRead
    global_metrics: KpiGlobalRead = Field(alias="global")
    installations: list[InstallationKpiRead] = Field(default_factory=list)
    weekly_trend: list[WeeklyTrendRead] = Field(default_factory=list)
    top_risks: list[InstallationKpiRead] = Field(default_factory=list)
    top_best: list[InstallationKpiRead] = Field(default_factory=list)


class PeriodComparisonRead(ApiModel):
    current: KpiGlobalRead
    previous: KpiGlobalRead
    delta_compliance: float
    delta_omitted: int
    delta_alert_count: int


class KpiSnapshotRead(ApiModel):
    base_date: date
    week: PeriodComparisonRead
    mtd: PeriodComparisonRead
    ytd: PeriodComparisonRead


class ClockConfigUpdate(BaseModel):
    receipt_email_enabled: bool | None = None

    model_config = ConfigDict(extra="forbid")


class ClockConfigRead(BaseModel):
    tenant_id: int
    clock_config: dict[str, Any]
