from datetime import date

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.orm import Session

from fieldops.audit import client_ip, record_audit, user_agent
from fieldops.db import get_db
from fieldops.errors import ApiError
from fieldops.models import AuditActorType
from fieldops.schemas import (
    ClockEventCreate,
    ClockEventRead,
    CredentialCheckRead,
    CredentialsRequest,
    IntegrityAuditRead,
)
from fieldops.services.clock_events import register_clock_event, validate_credentials
from fieldops.services.integrity import audit_clock_events

router = APIRouter(prefix="/clock-events", tags=["clock-events"])


@router.post("", response_model=ClockEventRead, status_code=201)
def create_clock_event(
    payload: ClockEventCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> ClockEventRead:
    request.state.actor = "guard"
    try:
        receipt = register_clock_event(
            db,
            site_code=payload.site_code,
            national_id=payload.national_id,
            pin=payload.pin,
            event_type=payload.type,
            lat=payload.lat,
            lng=payload.lng,
            evidence_photo=payload.evidence_photo,
            ip_address=client_ip(request),
            user_agent=user_agent(request),
        )
    except ApiError as exc:
        record_audit(
            db,
            request,
            actor_type=AuditActorType.GUARD,
            actor_id=payload.national_id,
            action="CLOCK_EVENT_REJECTED",
            success=False,
            entity_type="installation",
            entity_id=payload.site_code,
            details={"type": payload.type.value, "code": exc.code, **exc.details},
        )
        raise

    event = receipt.event
    request.state.actor_id = str(event.guard_id)
    request.state.event_id = event.id
    record_audit(
        db,
        request,
        actor_type=AuditActorType.GUARD,
        actor_id=str(event.guard_id),
        action="CLOCK_EVENT_CREATED",
        entity_type="clock_event",
        entity_id=str(event.id),
        details={
            "type": event.type.value,
            "geofence_validated": event.geofence_validated,
            "distance_m": event.distance_m,
        },
    )
    return ClockEventRead(
        id=event.id,
        type=event.type,
        timestamp=event.timestamp,
        geofence_validated=event.geofence_validated,
        distance_m=event.distance_m,
        guard_name=receipt.guard_name,
        installation_name=receipt.installation_name,
        integrity_hash=event.integrity_hash,
        lateness_minutes=event.lateness_minutes,
    )


@router.post("/validate", response_model=CredentialCheckRead)
def validate_clock_credentials(
    payload: CredentialsRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> CredentialCheckRead:
    request.state.actor = "guard"
    check = validate_credentials(
        db,
        site_code=payload.site_code,
        national_id=payload.national_id,
        pin=payload.pin,
    )
    return CredentialCheckRead(
        guard_name=check.guard_name,
        installation_name=check.installation_name,
        last_event_type=check.last_event_type,
        next_event_type=check.next_event_type,
    )


@router.get("/audit", response_model=IntegrityAuditRead)
def audit_integrity(
    request: Request,
    date_from: date = Query(alias="from"),
    date_to: date = Query(alias="to"),
    tenant_id: int = Header(alias="X-Tenant-Id", ge=1),
    db: Session = Depends(get_db),
) -> IntegrityAuditRead:
    request.state.actor = "admin"
    report = audit_clock_events(db, tenant_id=tenant_id, date_from=date_from, date_to=date_to)
    record_audit(
        db,
        request,
        actor_type=AuditActorType.ADMIN,
        actor_id=f"tenant:{tenant_id}",
        action="CLOCK_EVENT_INTEGRITY_AUDIT",
        success=report.ok,
        entity_type="tenant",
        entity_id=str(tenant_id),
        details={
            "date_from": date_from.isoformat(),
            "date_to": date_to.isoformat(),
            "checked": report.checked,
            "mismatched_ids": report.mismatched_ids,
        },
    )
    return IntegrityAuditRead(
        date_from=date_from,
        date_to=date_to,
        checked=report.checked,
        mismatched=len(report.mismatched_ids),
        mismatched_ids=report.mismatched_ids,
        ok=report.ok,
    )
