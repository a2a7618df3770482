from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from passlib.hash import bcrypt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fieldops import models  # noqa: F401
from fieldops.db import Base
from fieldops.models import (
    Guard,
    GuardAssignment,
    GuardLifecycleStatus,
    Installation,
    PatrolCheckpoint,
    PatrolExecution,
    PatrolExecutionStatus,
    PatrolTemplate,
    Tenant,
)

SANTIAGO = ZoneInfo("America/Santiago")
VALID_RUT = "12345678-5"
SECOND_RUT = "11111111-1"
PIN = "1234"
SITE_CODE = "SITE-001"
CENTER_LAT = -33.45
CENTER_LNG = -70.66

_PIN_HASH = bcrypt.using(rounds=4).hash(PIN)


def make_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def make_session() -> Session:
    return make_session_factory()()


def override_get_db(factory: sessionmaker):
    def _override() -> Generator[Session, None, None]:
        db = factory()
        try:
            yield db
        finally:
            db.close()

    return _override


def santiago_to_utc(year: int, month: int, day: int, hour: int, minute: int, second: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=SANTIAGO).astimezone(timezone.utc)


def seed_site(
    db: Session,
    *,
    with_geofence: bool = True,
    radius_m: int = 100,
    shift_start: str | None = "08:00",
    lifecycle_status: GuardLifecycleStatus = GuardLifecycleStatus.HIRED,
    email: str | None = "guard@example.com",
) -> tuple[Tenant, Installation, Guard]:
    tenant = Tenant(name="Acme Security", clock_config={})
    db.add(tenant)
    db.flush()
    installation = Installation(
        tenant_id=tenant.id,
        name="North Warehouse",
        site_code=SITE_CODE,
        is_active=True,
        lat=CENTER_LAT if with_geofence else None,
        lng=CENTER_LNG if with_geofence else None,
        geofence_radius_m=radius_m,
    )
    guard = Guard(
        tenant_id=tenant.id,
        national_id=VALID_RUT,
        first_name="Ana",
        last_name="Rojas",
        email=email,
        lifecycle_status=lifecycle_status,
        is_blacklisted=False,
        pin_hash=_PIN_HASH,
    )
    db.add_all([installation, guard])
    db.flush()
    if shift_start is not None:
        db.add(
            GuardAssignment(
                tenant_id=tenant.id,
                guard_id=guard.id,
                installation_id=installation.id,
                slot_number=1,
                shift_start=shift_start,
                is_active=True,
            )
        )
    db.commit()
    return tenant, installation, guard


def seed_patrol(
    db: Session,
    *,
    tenant: Tenant,
    installation: Installation,
    scheduled_at: datetime,
    checkpoint_count: int = 5,
    offset_step_minutes: int = 10,
    status: PatrolExecutionStatus = PatrolExecutionStatus.PENDING,
    guard_id: int | None = None,
) -> PatrolExecution:
    template = PatrolTemplate(tenant_id=tenant.id, installation_id=installation.id, name="Night round")
    template.checkpoints = [
        PatrolCheckpoint(
            code=f"CP-{index + 1}",
            name=f"Checkpoint {index + 1}",
            position=index,
            expected_offset_minutes=index * offset_step_minutes,
        )
        for index in range(checkpoint_count)
    ]
    db.add(template)
    db.flush()
    execution = PatrolExecution(
        tenant_id=tenant.id,
        template_id=template.id,
        guard_id=guard_id,
        scheduled_at=scheduled_at,
        status=status,
        checkpoints_total=checkpoint_count,
        marks_recorded=0,
        device_info={},
    )
    db.add(execution)
    db.commit()
    return execution
