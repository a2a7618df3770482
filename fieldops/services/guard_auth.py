from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldops.errors import AuthError, AuthorizationError, NotFoundError, ValidationError
from fieldops.models import ACTIVE_LIFECYCLE_STATUSES, Guard, GuardLifecycleStatus, Installation
from fieldops.security import verify_pin
from fieldops.services.national_id import is_valid_national_id, normalize_national_id


@dataclass(frozen=True)
class GuardContext:
    guard: Guard
    installation: Installation
    national_id: str


def resolve_active_installation(db: Session, site_code: str) -> Installation:
    installation = db.scalar(
        select(Installation).where(
            Installation.site_code == site_code.strip(),
            Installation.is_active.is_(True),
        )
    )
    if installation is None:
        raise NotFoundError("Unknown installation code.", code="INSTALLATION_NOT_FOUND")
    return installation


def authenticate_guard(db: Session, *, site_code: str, national_id: str, pin: str) -> GuardContext:
    normalized = normalize_national_id(national_id)
    if not is_valid_national_id(normalized):
        raise ValidationError("Invalid national ID.", code="INVALID_NATIONAL_ID")

    installation = resolve_active_installation(db, site_code)

    guard = db.scalar(
        select(Guard).where(
            Guard.tenant_id == installation.tenant_id,
            Guard.national_id == normalized,
        )
    )
    if guard is None:
        raise AuthError()

    if guard.lifecycle_status not in ACTIVE_LIFECYCLE_STATUSES:
        raise AuthorizationError("Guard is not active.", code="GUARD_INACTIVE")
    if guard.is_blacklisted or guard.lifecycle_status == GuardLifecycleStatus.BLACKLISTED:
        raise AuthorizationError("Guard is not enabled.", code="GUARD_BLACKLISTED")
    if not guard.pin_hash:
        raise AuthorizationError("PIN not configured.", code="PIN_NOT_CONFIGURED")
    if not verify_pin(pin, guard.pin_hash):
        raise AuthError()

    return GuardContext(guard=guard, installation=installation, national_id=normalized)
