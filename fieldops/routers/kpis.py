from datetime import date

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from fieldops.db import get_db
from fieldops.schemas import KpiAggregateRead, KpiPeriodRead, KpiSnapshotRead
from fieldops.services.kpis import get_aggregate, get_snapshot
from fieldops.services.timeutils import local_day_from_utc, utcnow

router = APIRouter(prefix="/kpis", tags=["kpis"])


@router.get("/aggregate", response_model=KpiAggregateRead)
def aggregate(
    date_from: date = Query(alias="from"),
    date_to: date = Query(alias="to"),
    tenant_id: int = Header(alias="X-Tenant-Id", ge=1),
    db: Session = Depends(get_db),
) -> KpiAggregateRead:
    result = get_aggregate(db, tenant_id=tenant_id, date_from=date_from, date_to=date_to)
    return KpiAggregateRead(
        period=KpiPeriodRead(
            date_from=result.date_from,
            date_to=result.date_to,
            execution_count=result.execution_count,
        ),
        global_metrics=result.global_metrics,
        installations=result.installations,
        weekly_trend=result.weekly_trend,
        top_risks=result.top_risks,
        top_best=result.top_best,
    )


@router.get("/snapshot", response_model=KpiSnapshotRead)
def snapshot(
    base_date: date | None = Query(default=None, alias="baseDate"),
    tenant_id: int = Header(alias="X-Tenant-Id", ge=1),
    db: Session = Depends(get_db),
) -> KpiSnapshotRead:
    result = get_snapshot(db, tenant_id=tenant_id, base_date=base_date or local_day_from_utc(utcnow()))
    return KpiSnapshotRead.model_validate(result)
