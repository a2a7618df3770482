"""Tamper-evidence for clock events.

The digest covers a fixed-order, pipe-joined rendering of the event's own
persisted fields, so any audit can recompute it from the stored row alone.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldops.errors import IntegrityError
from fieldops.models import ClockEvent
from fieldops.services.timeutils import local_range_bounds_utc

logger = logging.getLogger("fieldops.integrity")


def truncate_to_millis(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def canonical_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc_value = value.astimezone(timezone.utc)
    return utc_value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_value.microsecond // 1000:03d}Z"


def compute_integrity_hash(
    *,
    guard_id: int,
    installation_id: int,
    event_type: str,
    timestamp: datetime,
    lat: float,
    lng: float,
    method_id: str,
    tenant_id: int,
) -> str:
    canonical = "|".join(
        [
            str(guard_id),
            str(installation_id),
            event_type,
            canonical_timestamp(timestamp),
            repr(float(lat)),
            repr(float(lng)),
            method_id,
            str(tenant_id),
        ]
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def recompute_event_hash(event: ClockEvent) -> str:
    return compute_integrity_hash(
        guard_id=event.guard_id,
        installation_id=event.installation_id,
        event_type=event.type.value,
        timestamp=event.timestamp,
        lat=event.lat,
        lng=event.lng,
        method_id=event.method_id,
        tenant_id=event.tenant_id,
    )


def verify_clock_event(event: ClockEvent) -> None:
    expected = recompute_event_hash(event)
    if expected != event.integrity_hash:
        raise IntegrityError(
            "Stored integrity hash does not match the event contents.",
            details={"event_id": event.id, "stored": event.integrity_hash, "recomputed": expected},
        )


@dataclass
class IntegrityAuditReport:
    checked: int = 0
    mismatched_ids: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatched_ids


def audit_clock_events(
    db: Session,
    *,
    tenant_id: int,
    date_from: date,
    date_to: date,
) -> IntegrityAuditReport:
    start, end = local_range_bounds_utc(date_from, date_to)
    events = db.scalars(
        select(ClockEvent)
        .where(
            ClockEvent.tenant_id == tenant_id,
            ClockEvent.timestamp >= start,
            ClockEvent.timestamp < end,
        )
        .order_by(ClockEvent.id.asc())
    ).all()

    report = IntegrityAuditReport()
    for event in events:
        report.checked += 1
        try:
            verify_clock_event(event)
        except IntegrityError as exc:
            report.mismatched_ids.append(event.id)
            logger.warning("clock_event_integrity_mismatch", extra=exc.details)

    logger.info(
        "clock_event_integrity_audit",
        extra={
            "tenant_id": tenant_id,
            "date_from": date_from.isoformat(),
            "date_to": date_to.isoformat(),
            "checked": report.checked,
            "mismatched": len(report.mismatched_ids),
        },
    )
    return report
