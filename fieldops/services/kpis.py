"""Operational KPI rollups over finalized attendance and patrol records.

`aggregate_records` is the pure core: it only sees `PatrolCheckRecord` values,
one per scheduled check. A patrol contributes one record per template
checkpoint; a past day of attendance contributes one record per planned slot.
`get_aggregate` and `get_snapshot` load both sources from the database for a
tenant and date window.
"""

from __future__ import annotations

import calendar
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session, selectinload

from fieldops.errors import ValidationError
from fieldops.models import (
    AlertSeverity,
    DailyAttendance,
    DailyAttendanceStatus,
    GuardAssignment,
    Installation,
    PatrolExecution,
    PatrolExecutionStatus,
    PatrolTemplate,
    TERMINAL_EXECUTION_STATUSES,
)
from fieldops.services.timeutils import (
    attendance_timezone,
    circular_minutes_diff,
    local_day_from_utc,
    local_range_bounds_utc,
    minutes_of_day,
    normalize_ts,
    parse_hhmm,
    utcnow,
)
from fieldops.settings import get_settings

SOURCE_PATROL = "patrol"
SOURCE_ATTENDANCE = "attendance"

INCIDENT_NOVELTY = "novelty"
INCIDENT_CRITICAL = "critical"
RANKING_SIZE = 10

ATTENDED_STATUSES = frozenset({DailyAttendanceStatus.PRESENT, DailyAttendanceStatus.REPLACED})


@dataclass(frozen=True)
class PatrolCheckRecord:
    execution_id: int
    installation_id: int
    installation_name: str
    day: date
    completed: bool
    deviation_minutes: int | None = None
    incident: str | None = None
    source: str = SOURCE_PATROL


@dataclass
class InstallationKpi:
    installation_id: int
    installation_name: str
    total_checks: int = 0
    completed: int = 0
    omitted: int = 0
    compliance: float = 100.0
    avg_deviation_min: float = 0.0
    execution_count: int = 0
    novelties: int = 0
    criticals: int = 0
    alert: bool = False
    attendance_checks: int = 0
    patrol_checks: int = 0
    compliance_ratio: float = 1.0

    @property
    def risk_score(self) -> int:
        return (3 if self.criticals > 0 else 0) + (2 if self.alert else 0) + (1 if self.omitted > 0 else 0)


@dataclass(frozen=True)
class KpiGlobal:
    total_checks: int
    completed: int
    omitted: int
    compliance: float
    alert_count: int
    critical_count: int
    avg_deviation_min: float
    attendance_checks: int = 0
    patrol_checks: int = 0


@dataclass(frozen=True)
class WeeklyTrendPoint:
    week_label: str
    week_start: date
    compliance: float
    total_checks: int
    completed: int


@dataclass(frozen=True)
class KpiAggregate:
    date_from: date
    date_to: date
    execution_count: int
    global_metrics: KpiGlobal
    installations: list[InstallationKpi] = field(default_factory=list)
    weekly_trend: list[WeeklyTrendPoint] = field(default_factory=list)
    top_risks: list[InstallationKpi] = field(default_factory=list)
    top_best: list[InstallationKpi] = field(default_factory=list)


@dataclass(frozen=True)
class PeriodComparison:
    current: KpiGlobal
    previous: KpiGlobal
    delta_compliance: float
    delta_omitted: int
    delta_alert_count: int


@dataclass(frozen=True)
class KpiSnapshot:
    base_date: date
    week: PeriodComparison
    mtd: PeriodComparison
    ytd: PeriodComparison


def _compliance_ratio(completed: int, total: int) -> float:
    if total <= 0:
        return 1.0
    return completed / total


def _average(values: list[int]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 1)


def iso_week_label(day: date) -> str:
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def start_of_week(day: date) -> date:
    return day - timedelta(days=day.weekday())


def aggregate_records(
    records: Iterable[PatrolCheckRecord],
    date_from: date,
    date_to: date,
    threshold: float,
) -> KpiAggregate:
    installations: dict[int, InstallationKpi] = {}
    deviations: dict[int, list[int]] = defaultdict(list)
    incident_seen: dict[int, set[tuple[str, int]]] = defaultdict(set)
    weeks: dict[str, list[int]] = {}
    week_starts: dict[str, date] = {}
    all_deviations: list[int] = []
    executions: set[int] = set()

    for record in records:
        if record.day < date_from or record.day > date_to:
            continue
        kpi = installations.get(record.installation_id)
        if kpi is None:
            kpi = InstallationKpi(
                installation_id=record.installation_id,
                installation_name=record.installation_name,
            )
            installations[record.installation_id] = kpi

        # execution_id is only unique within a source
        unit = (record.source, record.execution_id)
        if unit not in incident_seen[record.installation_id]:
            incident_seen[record.installation_id].add(unit)
            if record.source == SOURCE_PATROL:
                kpi.execution_count += 1
            if record.incident == INCIDENT_CRITICAL:
                kpi.criticals += 1
            elif record.incident == INCIDENT_NOVELTY:
                kpi.novelties += 1
        if record.source == SOURCE_PATROL:
            executions.add(record.execution_id)
            kpi.patrol_checks += 1
        else:
            kpi.attendance_checks += 1

        label = iso_week_label(record.day)
        week = weeks.setdefault(label, [0, 0])
        week_starts.setdefault(label, start_of_week(record.day))

        kpi.total_checks += 1
        week[0] += 1
        if record.completed:
            kpi.completed += 1
            week[1] += 1
            if record.deviation_minutes is not None:
                deviations[record.installation_id].append(record.deviation_minutes)
                all_deviations.append(record.deviation_minutes)
        else:
            kpi.omitted += 1

    for installation_id, kpi in installations.items():
        kpi.compliance_ratio = _compliance_ratio(kpi.completed, kpi.total_checks)
        kpi.compliance = round(kpi.compliance_ratio * 100, 1)
        kpi.alert = kpi.compliance_ratio * 100 < threshold
        kpi.avg_deviation_min = _average(deviations[installation_id])

    ordered = sorted(installations.values(), key=lambda item: (item.compliance_ratio, -item.omitted))

    total = sum(item.total_checks for item in ordered)
    completed = sum(item.completed for item in ordered)
    global_metrics = KpiGlobal(
        total_checks=total,
        completed=completed,
        omitted=sum(item.omitted for item in ordered),
        compliance=round(_compliance_ratio(completed, total) * 100, 1),
        alert_count=sum(1 for item in ordered if item.alert),
        critical_count=sum(1 for item in ordered if item.criticals > 0),
        avg_deviation_min=_average(all_deviations),
        attendance_checks=sum(item.attendance_checks for item in ordered),
        patrol_checks=sum(item.patrol_checks for item in ordered),
    )

    weekly_trend = [
        WeeklyTrendPoint(
            week_label=label,
            week_start=week_starts[label],
            compliance=round(_compliance_ratio(counts[1], counts[0]) * 100, 1),
            total_checks=counts[0],
            completed=counts[1],
        )
        for label, counts in sorted(weeks.items(), key=lambda item: week_starts[item[0]])
    ]

    top_risks = sorted(
        ordered,
        key=lambda item: (-item.risk_score, -item.omitted, item.compliance_ratio),
    )[:RANKING_SIZE]
    top_best = sorted(ordered, key=lambda item: (-item.compliance_ratio, item.omitted))[:RANKING_SIZE]

    return KpiAggregate(
        date_from=date_from,
        date_to=date_to,
        execution_count=len(executions),
        global_metrics=global_metrics,
        installations=ordered,
        weekly_trend=weekly_trend,
        top_risks=top_risks,
        top_best=top_best,
    )


def _execution_incident(execution: PatrolExecution) -> str | None:
    if execution.status == PatrolExecutionStatus.SUSPICIOUS:
        return INCIDENT_CRITICAL
    severities = {alert.severity for alert in execution.alerts}
    if AlertSeverity.CRITICAL in severities:
        return INCIDENT_CRITICAL
    if severities:
        return INCIDENT_NOVELTY
    return None


def records_from_execution(execution: PatrolExecution) -> list[PatrolCheckRecord]:
    template = execution.template
    installation = template.installation
    anchor = normalize_ts(execution.started_at or execution.scheduled_at)
    day = local_day_from_utc(execution.scheduled_at)
    incident = _execution_incident(execution)
    marks_by_checkpoint = {mark.checkpoint_id: mark for mark in execution.marks}

    records = []
    for checkpoint in template.checkpoints:
        mark = marks_by_checkpoint.get(checkpoint.id)
        deviation = None
        if mark is not None:
            expected = anchor + timedelta(minutes=checkpoint.expected_offset_minutes)
            deviation = circular_minutes_diff(
                minutes_of_day(normalize_ts(mark.scanned_at)),
                minutes_of_day(expected),
            )
        records.append(
            PatrolCheckRecord(
                execution_id=execution.id,
                installation_id=installation.id,
                installation_name=installation.name,
                day=day,
                completed=mark is not None,
                deviation_minutes=deviation,
                incident=incident,
            )
        )
    return records


def _attendance_deviation(attendance: DailyAttendance, shift_start: str | None) -> int | None:
    expected = parse_hhmm(shift_start)
    if attendance.check_in_at is None or expected is None:
        return None
    local_check_in = normalize_ts(attendance.check_in_at).astimezone(attendance_timezone())
    return circular_minutes_diff(minutes_of_day(local_check_in), expected.hour * 60 + expected.minute)


def load_attendance_records(
    db: Session,
    *,
    tenant_id: int,
    date_from: date,
    date_to: date,
) -> list[PatrolCheckRecord]:
    """One record per planned slot-day; only days before today are final."""
    last_final_day = min(date_to, local_day_from_utc(utcnow()) - timedelta(days=1))
    if last_final_day < date_from:
        return []

    rows = db.execute(
        select(DailyAttendance, Installation)
        .join(Installation, DailyAttendance.installation_id == Installation.id)
        .where(
            DailyAttendance.tenant_id == tenant_id,
            DailyAttendance.date >= date_from,
            DailyAttendance.date <= last_final_day,
        )
        .order_by(DailyAttendance.date.asc(), DailyAttendance.id.asc())
    ).all()
    if not rows:
        return []

    shift_starts: dict[tuple[int, int, int | None], str | None] = {}
    assignments = db.scalars(
        select(GuardAssignment).where(
            GuardAssignment.tenant_id == tenant_id,
            GuardAssignment.is_active.is_(True),
        )
    ).all()
    for assignment in assignments:
        shift_starts[(assignment.installation_id, assignment.slot_number, assignment.guard_id)] = assignment.shift_start
        shift_starts.setdefault((assignment.installation_id, assignment.slot_number, None), assignment.shift_start)

    records = []
    for attendance, installation in rows:
        guard_id = attendance.actual_guard_id or attendance.planned_guard_id
        shift_start = shift_starts.get(
            (attendance.installation_id, attendance.slot_number, guard_id),
            shift_starts.get((attendance.installation_id, attendance.slot_number, None)),
        )
        completed = attendance.status in ATTENDED_STATUSES
        records.append(
            PatrolCheckRecord(
                execution_id=attendance.id,
                installation_id=installation.id,
                installation_name=installation.name,
                day=attendance.date,
                completed=completed,
                deviation_minutes=_attendance_deviation(attendance, shift_start) if completed else None,
                source=SOURCE_ATTENDANCE,
            )
        )
    return records


def load_patrol_records(db: Session, *, tenant_id: int, date_from: date, date_to: date) -> list[PatrolCheckRecord]:
    start_utc, end_utc = local_range_bounds_utc(date_from, date_to)
    stale_before = utcnow() - timedelta(hours=get_settings().patrol_stale_after_hours)
    executions = db.scalars(
        select(PatrolExecution)
        .options(
            selectinload(PatrolExecution.template).selectinload(PatrolTemplate.checkpoints),
            selectinload(PatrolExecution.template).selectinload(PatrolTemplate.installation),
            selectinload(PatrolExecution.marks),
            selectinload(PatrolExecution.alerts),
        )
        .where(
            PatrolExecution.tenant_id == tenant_id,
            PatrolExecution.scheduled_at >= start_utc,
            PatrolExecution.scheduled_at < end_utc,
            or_(
                PatrolExecution.status.in_(TERMINAL_EXECUTION_STATUSES),
                and_(
                    PatrolExecution.status.not_in(TERMINAL_EXECUTION_STATUSES),
                    PatrolExecution.scheduled_at < stale_before,
                ),
            ),
        )
        .order_by(PatrolExecution.scheduled_at.asc(), PatrolExecution.id.asc())
    ).all()

    records: list[PatrolCheckRecord] = []
    for execution in executions:
        records.extend(records_from_execution(execution))
    return records


def get_aggregate(db: Session, *, tenant_id: int, date_from: date, date_to: date) -> KpiAggregate:
    if date_from > date_to:
        raise ValidationError("'from' must not be after 'to'.", code="INVALID_DATE_RANGE")
    records = load_check_records(db, tenant_id=tenant_id, date_from=date_from, date_to=date_to)
    return aggregate_records(records, date_from, date_to, get_settings().kpi_alert_threshold)


def load_check_records(db: Session, *, tenant_id: int, date_from: date, date_to: date) -> list[PatrolCheckRecord]:
    records = load_attendance_records(db, tenant_id=tenant_id, date_from=date_from, date_to=date_to)
    records.extend(load_patrol_records(db, tenant_id=tenant_id, date_from=date_from, date_to=date_to))
    return records


def _same_day_previous_month(day: date) -> tuple[date, date]:
    if day.month == 1:
        year, month = day.year - 1, 12
    else:
        year, month = day.year, day.month - 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, min(day.day, last_day))


def _same_day_previous_year(day: date) -> date:
    if day.month == 2 and day.day == 29:
        return date(day.year - 1, 2, 28)
    return day.replace(year=day.year - 1)


def snapshot_windows(base_date: date) -> dict[str, tuple[tuple[date, date], tuple[date, date]]]:
    week_from = start_of_week(base_date)
    previous_week = (week_from - timedelta(days=7), base_date - timedelta(days=7))

    month_from = base_date.replace(day=1)
    previous_month = _same_day_previous_month(base_date)

    year_from = date(base_date.year, 1, 1)
    previous_year_day = _same_day_previous_year(base_date)
    previous_year = (date(previous_year_day.year, 1, 1), previous_year_day)

    return {
        "week": ((week_from, base_date), previous_week),
        "mtd": ((month_from, base_date), previous_month),
        "ytd": ((year_from, base_date), previous_year),
    }


def compare_periods(current: KpiGlobal, previous: KpiGlobal) -> PeriodComparison:
    return PeriodComparison(
        current=current,
        previous=previous,
        delta_compliance=round(current.compliance - previous.compliance, 1),
        delta_omitted=current.omitted - previous.omitted,
        delta_alert_count=current.alert_count - previous.alert_count,
    )


def get_snapshot(db: Session, *, tenant_id: int, base_date: date) -> KpiSnapshot:
    comparisons = {}
    for horizon, (current_window, previous_window) in snapshot_windows(base_date).items():
        current = get_aggregate(db, tenant_id=tenant_id, date_from=current_window[0], date_to=current_window[1])
        previous = get_aggregate(db, tenant_id=tenant_id, date_from=previous_window[0], date_to=previous_window[1])
        comparisons[horizon] = compare_periods(current.global_metrics, previous.global_metrics)
    return KpiSnapshot(base_date=base_date, **comparisons)
