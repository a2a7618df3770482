from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from fieldops.audit import record_audit
from fieldops.db import get_db
from fieldops.models import AuditActorType
from fieldops.schemas import ClockConfigRead, ClockConfigUpdate
from fieldops.services.tenant_config import update_clock_config

router = APIRouter(prefix="/admin", tags=["admin"])


@router.put("/tenants/{tenant_id}/clock-config", response_model=ClockConfigRead)
def put_clock_config(
    tenant_id: int,
    payload: ClockConfigUpdate,
    request: Request,
    db: Session = Depends(get_db),
) -> ClockConfigRead:
    request.state.actor = "admin"
    changes = payload.model_dump(exclude_unset=True)
    config = update_clock_config(db, tenant_id, changes)
    record_audit(
        db,
        request,
        actor_type=AuditActorType.ADMIN,
        actor_id=f"tenant:{tenant_id}",
        action="TENANT_CLOCK_CONFIG_UPDATED",
        entity_type="tenant",
        entity_id=str(tenant_id),
        details={"changes": changes},
    )
    return ClockConfigRead(tenant_id=tenant_id, clock_config=config)
