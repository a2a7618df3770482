"""Request-scoped audit trail.

Every guard or back-office action that changes state (or is refused) leaves one
`AuditLog` row carrying the caller's address, user agent and request id. Rows
are committed on their own, so callers write them only after the business
transaction has been committed or rolled back.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.orm import Session

from fieldops.models import AuditActorType, AuditLog

logger = logging.getLogger("fieldops.audit")

MAX_USER_AGENT_LENGTH = 1024


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def user_agent(request: Request) -> str | None:
    value = request.headers.get("user-agent")
    return value[:MAX_USER_AGENT_LENGTH] if value else None


def record_audit(
    db: Session,
    request: Request,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool = True,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditLog | None:
    request_id = getattr(request.state, "request_id", None)
    entry = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=client_ip(request),
        user_agent=user_agent(request),
        success=success,
        details={**(details or {}), "request_id": request_id},
    )
    db.add(entry)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={"request_id": request_id, "action": action, "actor_id": actor_id},
        )
        return None

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "success": success,
        },
    )
    return entry
