from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from sqlalchemy.orm import Session

from fieldops.errors import NotFoundError
from fieldops.models import Tenant
from fieldops.services.cache import TTLCache
from fieldops.settings import get_settings

logger = logging.getLogger("fieldops.tenant_config")

DEFAULT_CLOCK_CONFIG: dict[str, Any] = {
    "receipt_email_enabled": True,
}


@lru_cache
def get_clock_config_cache() -> TTLCache[int, dict[str, Any]]:
    return TTLCache(ttl_seconds=get_settings().tenant_config_cache_ttl_seconds)


def get_clock_config(db: Session, tenant_id: int) -> dict[str, Any]:
    cache = get_clock_config_cache()
    cached = cache.get(tenant_id)
    if cached is not None:
        return cached

    tenant = db.get(Tenant, tenant_id)
    stored = tenant.clock_config if tenant is not None and isinstance(tenant.clock_config, dict) else {}
    config = {**DEFAULT_CLOCK_CONFIG, **stored}
    cache.set(tenant_id, config)
    return config


def update_clock_config(db: Session, tenant_id: int, changes: dict[str, Any]) -> dict[str, Any]:
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found.", code="TENANT_NOT_FOUND")

    tenant.clock_config = {**(tenant.clock_config or {}), **changes}
    db.commit()
    get_clock_config_cache().invalidate(tenant_id)
    logger.info("tenant_clock_config_updated", extra={"tenant_id": tenant_id, "changes": changes})
    return {**DEFAULT_CLOCK_CONFIG, **tenant.clock_config}
