from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError as DBIntegrityError
from sqlalchemy.orm import Session, selectinload

from fieldops.errors import AuthorizationError, ConflictError, NotFoundError
from fieldops.models import (
    AlertSeverity,
    CheckpointMark,
    PatrolAlert,
    PatrolCheckpoint,
    PatrolExecution,
    PatrolExecutionStatus,
    PatrolTemplate,
    TERMINAL_EXECUTION_STATUSES,
)
from fieldops.services.anomalies import alert_severity, assess_mark
from fieldops.services.guard_auth import GuardContext, authenticate_guard
from fieldops.services.notifications import NotificationDispatcher, get_dispatcher, send_panic_alert
from fieldops.services.timeutils import local_day_bounds_utc, local_day_from_utc, utcnow
from fieldops.services.trust_score import MarkSample, TrustBreakdown, compute_trust_score
from fieldops.settings import get_settings, get_trust_weights

logger = logging.getLogger("fieldops.patrols")


@dataclass(frozen=True)
class MarkResult:
    mark: CheckpointMark
    duplicate: bool
    marks_recorded: int
    checkpoints_total: int


@dataclass(frozen=True)
class CompletionResult:
    execution: PatrolExecution
    breakdown: TrustBreakdown


@dataclass(frozen=True)
class PendingPatrols:
    context: GuardContext
    executions: list[PatrolExecution]


def authenticate(db: Session, *, site_code: str, national_id: str, pin: str) -> GuardContext:
    return authenticate_guard(db, site_code=site_code, national_id=national_id, pin=pin)


def list_pending(db: Session, *, site_code: str, national_id: str, pin: str) -> PendingPatrols:
    context = authenticate_guard(db, site_code=site_code, national_id=national_id, pin=pin)
    day_start, day_end = local_day_bounds_utc(local_day_from_utc(utcnow()))
    executions = list(
        db.scalars(
            select(PatrolExecution)
            .join(PatrolTemplate, PatrolExecution.template_id == PatrolTemplate.id)
            .options(
                selectinload(PatrolExecution.template).selectinload(PatrolTemplate.checkpoints),
                selectinload(PatrolExecution.marks).selectinload(CheckpointMark.checkpoint),
            )
            .where(
                PatrolTemplate.installation_id == context.installation.id,
                PatrolTemplate.is_active.is_(True),
                PatrolExecution.tenant_id == context.installation.tenant_id,
                PatrolExecution.status.not_in(TERMINAL_EXECUTION_STATUSES),
                PatrolExecution.scheduled_at >= day_start,
                PatrolExecution.scheduled_at < day_end,
                or_(
                    PatrolExecution.guard_id.is_(None),
                    PatrolExecution.guard_id == context.guard.id,
                ),
            )
            .order_by(PatrolExecution.scheduled_at.asc(), PatrolExecution.id.asc())
        ).all()
    )
    return PendingPatrols(context=context, executions=executions)


def _load_execution(db: Session, execution_id: int, *, for_update: bool = False) -> PatrolExecution:
    statement = (
        select(PatrolExecution)
        .options(selectinload(PatrolExecution.template).selectinload(PatrolTemplate.checkpoints))
        .where(PatrolExecution.id == execution_id)
    )
    if for_update:
        statement = statement.with_for_update()
    execution = db.scalar(statement)
    if execution is None:
        raise NotFoundError("Patrol execution not found.", code="EXECUTION_NOT_FOUND")
    return execution


def _require_in_progress(execution: PatrolExecution) -> None:
    if execution.status != PatrolExecutionStatus.IN_PROGRESS:
        raise ConflictError(
            f"Patrol execution is {execution.status.value}, not in progress.",
            code="EXECUTION_NOT_IN_PROGRESS",
            details={"status": execution.status.value},
        )


def start(
    db: Session,
    *,
    execution_id: int,
    device_info: dict[str, Any],
    context: GuardContext,
) -> PatrolExecution:
    execution = _load_execution(db, execution_id, for_update=True)
    if execution.template.installation_id != context.installation.id:
        raise NotFoundError("Patrol execution not found.", code="EXECUTION_NOT_FOUND")
    if execution.guard_id is not None and execution.guard_id != context.guard.id:
        raise AuthorizationError(
            "Patrol execution is assigned to another guard.",
            code="EXECUTION_ASSIGNED_TO_OTHER_GUARD",
        )
    if execution.status != PatrolExecutionStatus.PENDING:
        raise ConflictError(
            f"Patrol execution is already {execution.status.value}.",
            code="EXECUTION_ALREADY_STARTED",
            details={"status": execution.status.value},
        )

    execution.status = PatrolExecutionStatus.IN_PROGRESS
    execution.guard_id = context.guard.id
    execution.started_at = utcnow()
    execution.device_info = device_info
    execution.checkpoints_total = len(execution.template.checkpoints)
    execution.marks_recorded = 0
    db.commit()

    logger.info(
        "patrol_execution_started",
        extra={
            "execution_id": execution.id,
            "guard_id": context.guard.id,
            "checkpoints_total": execution.checkpoints_total,
        },
    )
    return execution


def _find_mark_by_client_id(db: Session, execution_id: int, client_mark_id: str) -> CheckpointMark | None:
    return db.scalar(
        select(CheckpointMark).where(
            CheckpointMark.execution_id == execution_id,
            CheckpointMark.client_mark_id == client_mark_id,
        )
    )


def _anomaly_alert(
    execution: PatrolExecution,
    checkpoint: PatrolCheckpoint,
    anomalies: list[str],
    *,
    lat: float,
    lng: float,
) -> PatrolAlert | None:
    severity = alert_severity(anomalies)
    if severity is None:
        return None
    label = checkpoint.name or checkpoint.code
    return PatrolAlert(
        tenant_id=execution.tenant_id,
        execution_id=execution.id,
        installation_id=execution.template.installation_id,
        kind=anomalies[0],
        severity=severity,
        lat=lat,
        lng=lng,
        message=f"Anomaly detected at checkpoint '{label}': {', '.join(anomalies)}.",
        details={"checkpoint_code": checkpoint.code, "anomalies": list(anomalies)},
    )


def mark_checkpoint(
    db: Session,
    *,
    execution_id: int,
    checkpoint_code: str,
    lat: float,
    lng: float,
    battery_level: float | None,
    motion_score: float,
    client_mark_id: str | None = None,
) -> MarkResult:
    execution = _load_execution(db, execution_id, for_update=True)

    if client_mark_id:
        existing = _find_mark_by_client_id(db, execution.id, client_mark_id)
        if existing is not None:
            logger.info(
                "patrol_mark_duplicate",
                extra={"execution_id": execution.id, "client_mark_id": client_mark_id},
            )
            return MarkResult(
                mark=existing,
                duplicate=True,
                marks_recorded=execution.marks_recorded,
                checkpoints_total=execution.checkpoints_total,
            )

    _require_in_progress(execution)

    checkpoint = db.scalar(
        select(PatrolCheckpoint).where(
            PatrolCheckpoint.template_id == execution.template_id,
            PatrolCheckpoint.code == checkpoint_code.strip(),
        )
    )
    if checkpoint is None:
        raise NotFoundError("Checkpoint does not belong to this patrol.", code="CHECKPOINT_NOT_FOUND")

    if execution.marks_recorded >= execution.checkpoints_total:
        raise ConflictError("All checkpoints are already recorded.", code="CHECKPOINT_LIMIT_REACHED")

    already_marked = db.scalar(
        select(CheckpointMark.id).where(
            CheckpointMark.execution_id == execution.id,
            CheckpointMark.checkpoint_id == checkpoint.id,
        )
    )
    if already_marked is not None:
        raise ConflictError("Checkpoint already recorded in this patrol.", code="CHECKPOINT_ALREADY_MARKED")

    scanned_at = utcnow()
    previous = db.scalar(
        select(CheckpointMark)
        .where(CheckpointMark.execution_id == execution.id)
        .order_by(CheckpointMark.scanned_at.desc(), CheckpointMark.id.desc())
        .limit(1)
    )
    settings = get_settings()
    assessment = assess_mark(
        checkpoint=checkpoint,
        previous=previous,
        lat=lat,
        lng=lng,
        scanned_at=scanned_at,
        motion_score=motion_score,
        battery_level=battery_level,
        max_speed_kmh=settings.patrol_max_speed_kmh,
        same_position_m=settings.patrol_same_position_m,
    )
    mark = CheckpointMark(
        execution_id=execution.id,
        checkpoint_id=checkpoint.id,
        client_mark_id=client_mark_id,
        scanned_at=scanned_at,
        lat=lat,
        lng=lng,
        battery_level=battery_level,
        motion_score=motion_score,
        geo_validated=assessment.geo_validated,
        geo_distance_m=assessment.geo_distance_m,
        speed_from_prev_kmh=assessment.speed_from_prev_kmh,
        time_from_prev_s=assessment.time_from_prev_s,
        anomalies=assessment.anomalies,
    )
    alert = _anomaly_alert(execution, checkpoint, assessment.anomalies, lat=lat, lng=lng)
    try:
        db.add(mark)
        if alert is not None:
            db.add(alert)
        execution.marks_recorded += 1
        db.commit()
    except DBIntegrityError as exc:
        db.rollback()
        if client_mark_id:
            existing = _find_mark_by_client_id(db, execution_id, client_mark_id)
            if existing is not None:
                refreshed = _load_execution(db, execution_id)
                return MarkResult(
                    mark=existing,
                    duplicate=True,
                    marks_recorded=refreshed.marks_recorded,
                    checkpoints_total=refreshed.checkpoints_total,
                )
        raise ConflictError(
            "Checkpoint already recorded in this patrol.",
            code="CHECKPOINT_ALREADY_MARKED",
        ) from exc

    logger.info(
        "patrol_mark_recorded",
        extra={
            "execution_id": execution.id,
            "checkpoint_code": checkpoint.code,
            "marks_recorded": execution.marks_recorded,
            "checkpoints_total": execution.checkpoints_total,
        },
    )
    if alert is not None:
        logger.warning(
            "patrol_mark_anomalies",
            extra={
                "execution_id": execution.id,
                "checkpoint_code": checkpoint.code,
                "anomalies": assessment.anomalies,
                "severity": alert.severity.value,
                "alert_id": alert.id,
            },
        )
    return MarkResult(
        mark=mark,
        duplicate=False,
        marks_recorded=execution.marks_recorded,
        checkpoints_total=execution.checkpoints_total,
    )


def resolve_final_status(completion_ratio: float, trust_score: float) -> PatrolExecutionStatus:
    settings = get_settings()
    if trust_score < settings.patrol_suspicious_trust_floor:
        return PatrolExecutionStatus.SUSPICIOUS
    if completion_ratio >= settings.patrol_completion_threshold:
        return PatrolExecutionStatus.COMPLETED
    return PatrolExecutionStatus.PARTIAL


def complete(db: Session, *, execution_id: int) -> CompletionResult:
    execution = _load_execution(db, execution_id, for_update=True)
    _require_in_progress(execution)

    marks = list(
        db.scalars(
            select(CheckpointMark)
            .options(selectinload(CheckpointMark.checkpoint))
            .where(CheckpointMark.execution_id == execution.id)
            .order_by(CheckpointMark.scanned_at.asc(), CheckpointMark.id.asc())
        ).all()
    )
    total = execution.checkpoints_total
    ratio = execution.marks_recorded / total if total else 0.0
    anchor = execution.started_at or execution.scheduled_at
    samples = [
        MarkSample(
            scanned_at=mark.scanned_at,
            expected_at=anchor + timedelta(minutes=mark.checkpoint.expected_offset_minutes),
            motion_score=mark.motion_score,
            battery_level=mark.battery_level,
        )
        for mark in marks
    ]
    settings = get_settings()
    breakdown = compute_trust_score(
        completion_ratio=ratio,
        samples=samples,
        weights=get_trust_weights(),
        time_window_minutes=settings.patrol_time_window_minutes,
    )

    execution.status = resolve_final_status(ratio, breakdown.score)
    execution.trust_score = breakdown.score
    execution.completion_pct = round(ratio * 100, 1)
    execution.completed_at = utcnow()
    db.commit()

    logger.info(
        "patrol_execution_completed",
        extra={
            "execution_id": execution.id,
            "status": execution.status.value,
            "trust_score": breakdown.score,
            "completion_pct": execution.completion_pct,
        },
    )
    return CompletionResult(execution=execution, breakdown=breakdown)


def panic(
    db: Session,
    *,
    execution_id: int,
    lat: float | None,
    lng: float | None,
    dispatcher: NotificationDispatcher | None = None,
) -> PatrolAlert:
    execution = _load_execution(db, execution_id)
    installation = execution.template.installation
    alert = PatrolAlert(
        tenant_id=execution.tenant_id,
        execution_id=execution.id,
        installation_id=installation.id,
        kind="panic",
        severity=AlertSeverity.CRITICAL,
        lat=lat,
        lng=lng,
        message=f"Panic button pressed during patrol '{execution.template.name}'.",
    )
    db.add(alert)
    db.commit()

    logger.warning(
        "patrol_panic_alert",
        extra={"alert_id": alert.id, "execution_id": execution.id, "installation_id": installation.id},
    )
    try:
        (dispatcher or get_dispatcher()).submit(
            "panic_alert",
            send_panic_alert,
            alert_id=alert.id,
            execution_id=execution.id,
            installation_name=installation.name,
            guard_name=execution.guard.full_name if execution.guard is not None else None,
            lat=lat,
            lng=lng,
        )
    except Exception:
        logger.exception("panic_alert_dispatch_failed", extra={"alert_id": alert.id})
    return alert
