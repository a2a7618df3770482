from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from fieldops.audit import record_audit
from fieldops.db import get_db
from fieldops.models import AuditActorType
from fieldops.schemas import (
    CheckpointRead,
    CredentialsRequest,
    ExecutionRequest,
    GuardSessionRead,
    MarkCheckpointRead,
    MarkCheckpointRequest,
    PanicRead,
    PanicRequest,
    PatrolCompleteRead,
    PatrolStartRead,
    PatrolStartRequest,
    PendingExecutionRead,
    PendingListRead,
)
from fieldops.services import patrols
from fieldops.services.guard_auth import authenticate_guard

router = APIRouter(prefix="/patrols", tags=["patrols"])


def _audit(
    db: Session,
    request: Request,
    *,
    action: str,
    execution_id: int,
    guard_id: int | None,
    details: dict,
) -> None:
    request.state.actor_id = str(guard_id) if guard_id is not None else "unknown"
    record_audit(
        db,
        request,
        actor_type=AuditActorType.GUARD,
        actor_id=request.state.actor_id,
        action=action,
        entity_type="patrol_execution",
        entity_id=str(execution_id),
        details=details,
    )


@router.post("/authenticate", response_model=GuardSessionRead)
def authenticate(payload: CredentialsRequest, request: Request, db: Session = Depends(get_db)) -> GuardSessionRead:
    request.state.actor = "guard"
    context = patrols.authenticate(
        db,
        site_code=payload.site_code,
        national_id=payload.national_id,
        pin=payload.pin,
    )
    request.state.actor_id = str(context.guard.id)
    return GuardSessionRead(guard_name=context.guard.full_name, installation_name=context.installation.name)


@router.post("/list-pending", response_model=PendingListRead)
def list_pending(payload: CredentialsRequest, request: Request, db: Session = Depends(get_db)) -> PendingListRead:
    request.state.actor = "guard"
    pending = patrols.list_pending(
        db,
        site_code=payload.site_code,
        national_id=payload.national_id,
        pin=payload.pin,
    )
    request.state.actor_id = str(pending.context.guard.id)
    return PendingListRead(
        guard_name=pending.context.guard.full_name,
        installation_name=pending.context.installation.name,
        executions=[
            PendingExecutionRead(
                id=execution.id,
                template_name=execution.template.name,
                scheduled_at=execution.scheduled_at,
                status=execution.status,
                checkpoints=[CheckpointRead.model_validate(item) for item in execution.template.checkpoints],
                marked_codes=[mark.checkpoint.code for mark in execution.marks],
            )
            for execution in pending.executions
        ],
    )


@router.post("/start", response_model=PatrolStartRead)
def start(payload: PatrolStartRequest, request: Request, db: Session = Depends(get_db)) -> PatrolStartRead:
    request.state.actor = "guard"
    context = authenticate_guard(
        db,
        site_code=payload.site_code,
        national_id=payload.national_id,
        pin=payload.pin,
    )
    request.state.actor_id = str(context.guard.id)
    execution = patrols.start(
        db,
        execution_id=payload.execution_id,
        device_info=payload.device_info.model_dump(exclude_none=True),
        context=context,
    )
    _audit(
        db,
        request,
        action="PATROL_STARTED",
        execution_id=execution.id,
        guard_id=execution.guard_id,
        details={"checkpoints_total": execution.checkpoints_total},
    )
    return PatrolStartRead(
        execution_id=execution.id,
        status=execution.status,
        started_at=execution.started_at,
        checkpoints_total=execution.checkpoints_total,
    )


@router.post("/mark-checkpoint", response_model=MarkCheckpointRead)
def mark_checkpoint(
    payload: MarkCheckpointRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> MarkCheckpointRead:
    request.state.actor = "guard"
    result = patrols.mark_checkpoint(
        db,
        execution_id=payload.execution_id,
        checkpoint_code=payload.checkpoint_code,
        lat=payload.lat,
        lng=payload.lng,
        battery_level=payload.battery_level,
        motion_score=payload.motion_score,
        client_mark_id=payload.client_mark_id,
    )
    return MarkCheckpointRead(
        mark_id=result.mark.id,
        checkpoint_code=result.mark.checkpoint.code,
        scanned_at=result.mark.scanned_at,
        duplicate=result.duplicate,
        marks_recorded=result.marks_recorded,
        checkpoints_total=result.checkpoints_total,
        geo_validated=result.mark.geo_validated,
        anomalies=list(result.mark.anomalies or []),
    )


@router.post("/complete", response_model=PatrolCompleteRead)
def complete(payload: ExecutionRequest, request: Request, db: Session = Depends(get_db)) -> PatrolCompleteRead:
    request.state.actor = "guard"
    result = patrols.complete(db, execution_id=payload.execution_id)
    execution = result.execution
    _audit(
        db,
        request,
        action="PATROL_COMPLETED",
        execution_id=execution.id,
        guard_id=execution.guard_id,
        details={
            "status": execution.status.value,
            "trust_score": execution.trust_score,
            "completion_pct": execution.completion_pct,
        },
    )
    return PatrolCompleteRead(
        execution_id=execution.id,
        status=execution.status,
        trust_score=execution.trust_score,
        completion_pct=execution.completion_pct,
        marks_recorded=execution.marks_recorded,
        checkpoints_total=execution.checkpoints_total,
    )


@router.post("/panic", response_model=PanicRead, status_code=201)
def panic(payload: PanicRequest, request: Request, db: Session = Depends(get_db)) -> PanicRead:
    request.state.actor = "guard"
    alert = patrols.panic(db, execution_id=payload.execution_id, lat=payload.lat, lng=payload.lng)
    _audit(
        db,
        request,
        action="PATROL_PANIC_ALERT",
        execution_id=payload.execution_id,
        guard_id=alert.execution.guard_id,
        details={"alert_id": alert.id, "lat": payload.lat, "lng": payload.lng},
    )
    return PanicRead(alert_id=alert.id, severity=alert.severity, created_at=alert.created_at)
