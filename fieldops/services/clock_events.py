from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import date, datetime
from math import floor

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError as DBIntegrityError
from sqlalchemy.orm import Session

from fieldops.errors import AuthorizationError, ConflictError
from fieldops.models import (
    ClockEvent,
    ClockEventType,
    DailyAttendance,
    DailyAttendanceStatus,
    Guard,
    GuardAssignment,
    Installation,
)
from fieldops.services.guard_auth import GuardContext, authenticate_guard
from fieldops.services.integrity import compute_integrity_hash, truncate_to_millis
from fieldops.services.location import evaluate_geofence
from fieldops.services.notifications import NotificationDispatcher, get_dispatcher, send_clock_receipt
from fieldops.services.tenant_config import get_clock_config
from fieldops.services.timeutils import attendance_timezone, local_day_from_utc, parse_hhmm, utcnow

logger = logging.getLogger("fieldops.clock_events")

VERIFICATION_METHOD_ID = "national_id_pin"


@dataclass(frozen=True)
class ClockEventReceipt:
    event: ClockEvent
    guard_name: str
    installation_name: str


@dataclass(frozen=True)
class CredentialCheck:
    guard_name: str
    installation_name: str
    last_event_type: ClockEventType | None

    @property
    def next_event_type(self) -> ClockEventType:
        if self.last_event_type == ClockEventType.ENTRY:
            return ClockEventType.EXIT
        return ClockEventType.ENTRY


def _latest_event_today(
    db: Session,
    *,
    guard_id: int,
    installation_id: int,
    local_day: date,
) -> ClockEvent | None:
    return db.scalar(
        select(ClockEvent)
        .where(
            ClockEvent.guard_id == guard_id,
            ClockEvent.installation_id == installation_id,
            ClockEvent.local_day == local_day,
        )
        .order_by(ClockEvent.sequence_no.desc())
        .limit(1)
    )


def _ensure_alternation(last_event: ClockEvent | None, event_type: ClockEventType) -> None:
    if last_event is not None:
        if last_event.type == event_type:
            if event_type == ClockEventType.ENTRY:
                message = "Entry already recorded. Record an exit first."
            else:
                message = "Exit already recorded. Record an entry first."
            raise ConflictError(message, code="ALTERNATION_VIOLATION")
        return
    if event_type == ClockEventType.EXIT:
        raise ConflictError("Cannot record an exit without a prior entry.", code="ENTRY_REQUIRED")


def _resolve_active_assignment(db: Session, *, guard_id: int, installation_id: int) -> GuardAssignment | None:
    return db.scalar(
        select(GuardAssignment)
        .where(
            GuardAssignment.guard_id == guard_id,
            GuardAssignment.installation_id == installation_id,
            GuardAssignment.is_active.is_(True),
        )
        .order_by(GuardAssignment.id.asc())
        .limit(1)
    )


def compute_lateness_minutes(server_ts: datetime, shift_start: str | None) -> int | None:
    start_time = parse_hhmm(shift_start)
    if start_time is None:
        return None
    tz = attendance_timezone()
    local_ts = server_ts.astimezone(tz)
    shift_start_today = datetime.combine(local_ts.date(), start_time, tzinfo=tz)
    if local_ts <= shift_start_today:
        return None
    return floor((local_ts - shift_start_today).total_seconds() / 60)


def evidence_photo_reference(evidence_photo: str | None) -> str | None:
    if not evidence_photo:
        return None
    digest = hashlib.sha256(evidence_photo.encode("utf-8")).hexdigest()
    return f"evidence:{digest}"


def _apply_to_daily_attendance(
    db: Session,
    *,
    event: ClockEvent,
    guard: Guard,
    assignment: GuardAssignment | None,
) -> DailyAttendance | None:
    if assignment is None:
        return None
    attendance = db.scalar(
        select(DailyAttendance).where(
            DailyAttendance.installation_id == event.installation_id,
            DailyAttendance.slot_number == assignment.slot_number,
            DailyAttendance.date == event.local_day,
            or_(
                DailyAttendance.planned_guard_id == guard.id,
                DailyAttendance.actual_guard_id == guard.id,
            ),
        )
    )
    if attendance is None:
        return None

    if event.type == ClockEventType.ENTRY:
        if attendance.check_in_at is None:
            attendance.check_in_at = event.timestamp
            attendance.check_in_event_id = event.id
        if attendance.status == DailyAttendanceStatus.PENDING:
            attendance.status = DailyAttendanceStatus.PRESENT
            attendance.actual_guard_id = guard.id
    else:
        attendance.check_out_at = event.timestamp
        attendance.check_out_event_id = event.id
    return attendance


def validate_credentials(db: Session, *, site_code: str, national_id: str, pin: str) -> CredentialCheck:
    context = authenticate_guard(db, site_code=site_code, national_id=national_id, pin=pin)
    last_event = _latest_event_today(
        db,
        guard_id=context.guard.id,
        installation_id=context.installation.id,
        local_day=local_day_from_utc(utcnow()),
    )
    return CredentialCheck(
        guard_name=context.guard.full_name,
        installation_name=context.installation.name,
        last_event_type=last_event.type if last_event is not None else None,
    )


def register_clock_event(
    db: Session,
    *,
    site_code: str,
    national_id: str,
    pin: str,
    event_type: ClockEventType,
    lat: float,
    lng: float,
    evidence_photo: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> ClockEventReceipt:
    context = authenticate_guard(db, site_code=site_code, national_id=national_id, pin=pin)
    guard = context.guard
    installation = context.installation

    server_ts = truncate_to_millis(utcnow())
    local_day = local_day_from_utc(server_ts)

    last_event = _latest_event_today(
        db,
        guard_id=guard.id,
        installation_id=installation.id,
        local_day=local_day,
    )
    _ensure_alternation(last_event, event_type)

    geofence = evaluate_geofence(installation, lat, lng)
    if not geofence.within:
        logger.warning(
            "clock_event_outside_geofence",
            extra={
                "guard_id": guard.id,
                "installation_id": installation.id,
                "distance_m": geofence.distance_m,
                "radius_m": geofence.radius_m,
            },
        )
        raise AuthorizationError(
            f"Location out of range: {geofence.distance_m} m from the installation "
            f"(maximum allowed {geofence.radius_m} m).",
            code="OUTSIDE_GEOFENCE",
            details={"distance_m": geofence.distance_m, "radius_m": geofence.radius_m},
        )

    integrity_hash = compute_integrity_hash(
        guard_id=guard.id,
        installation_id=installation.id,
        event_type=event_type.value,
        timestamp=server_ts,
        lat=lat,
        lng=lng,
        method_id=VERIFICATION_METHOD_ID,
        tenant_id=installation.tenant_id,
    )

    assignment = _resolve_active_assignment(db, guard_id=guard.id, installation_id=installation.id)
    lateness_minutes = None
    if event_type == ClockEventType.ENTRY and assignment is not None:
        lateness_minutes = compute_lateness_minutes(server_ts, assignment.shift_start)

    event = ClockEvent(
        tenant_id=installation.tenant_id,
        guard_id=guard.id,
        installation_id=installation.id,
        assignment_id=assignment.id if assignment is not None else None,
        type=event_type,
        timestamp=server_ts,
        local_day=local_day,
        sequence_no=(last_event.sequence_no if last_event is not None else 0) + 1,
        lat=lat,
        lng=lng,
        geofence_validated=geofence.validated,
        distance_m=geofence.distance_m,
        method_id=VERIFICATION_METHOD_ID,
        integrity_hash=integrity_hash,
        lateness_minutes=lateness_minutes,
        evidence_photo_ref=evidence_photo_reference(evidence_photo),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    try:
        db.add(event)
        db.flush()
        _apply_to_daily_attendance(db, event=event, guard=guard, assignment=assignment)
        db.commit()
    except DBIntegrityError as exc:
        db.rollback()
        raise ConflictError(
            "A concurrent submission was already recorded. Refresh and retry.",
            code="CONCURRENT_SUBMISSION",
        ) from exc
    db.refresh(event)

    logger.info(
        "clock_event_recorded",
        extra={
            "event_id": event.id,
            "guard_id": guard.id,
            "installation_id": installation.id,
            "type": event_type.value,
            "sequence_no": event.sequence_no,
            "geofence_validated": geofence.validated,
            "lateness_minutes": lateness_minutes,
        },
    )

    _dispatch_receipt(db, context=context, event=event, dispatcher=dispatcher)

    return ClockEventReceipt(
        event=event,
        guard_name=guard.full_name,
        installation_name=installation.name,
    )


def _dispatch_receipt(
    db: Session,
    *,
    context: GuardContext,
    event: ClockEvent,
    dispatcher: NotificationDispatcher | None,
) -> None:
    guard = context.guard
    installation: Installation = context.installation
    try:
        config = get_clock_config(db, installation.tenant_id)
        if not config.get("receipt_email_enabled", True) or not guard.email:
            return
        (dispatcher or get_dispatcher()).submit(
            "clock_receipt",
            send_clock_receipt,
            guard_email=guard.email,
            guard_name=guard.full_name,
            national_id=context.national_id,
            installation_name=installation.name,
            event_type=event.type.value,
            timestamp=event.timestamp,
            geofence_validated=event.geofence_validated,
            distance_m=event.distance_m,
            integrity_hash=event.integrity_hash,
        )
    except Exception:
        logger.exception("clock_receipt_dispatch_failed", extra={"event_id": event.id})
