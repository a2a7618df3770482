#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import sys
from datetime import date, datetime, timezone
from itertools import groupby

from sqlalchemy import select

from fieldops.db import SessionLocal
from fieldops.models import ClockEvent
from fieldops.services.integrity import audit_clock_events
from fieldops.services.timeutils import local_range_bounds_utc


def find_alternation_breaks(events: list[ClockEvent]) -> list[int]:
    breaks: list[int] = []
    ordered = sorted(events, key=lambda item: (item.guard_id, item.installation_id, item.local_day, item.sequence_no))
    for _, group in groupby(ordered, key=lambda item: (item.guard_id, item.installation_id, item.local_day)):
        previous = None
        for event in group:
            if previous is None and event.type.value == "exit":
                breaks.append(event.id)
            elif previous is not None and previous.type == event.type:
                breaks.append(event.id)
            previous = event
    return breaks


def run(tenant_id: int, date_from: date, date_to: date) -> dict:
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "tenant_id": tenant_id,
        "date_from": date_from.isoformat(),
        "date_to": date_to.isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append({"name": name, "status": status, "details": details})

    with SessionLocal() as db:
        integrity = audit_clock_events(db, tenant_id=tenant_id, date_from=date_from, date_to=date_to)
        add(
            "clock_event_integrity_hash",
            "ok" if integrity.ok else "fail",
            {"checked": integrity.checked, "mismatched_ids": integrity.mismatched_ids},
        )

        start, end = local_range_bounds_utc(date_from, date_to)
        events = list(
            db.scalars(
                select(ClockEvent).where(
                    ClockEvent.tenant_id == tenant_id,
                    ClockEvent.timestamp >= start,
                    ClockEvent.timestamp < end,
                )
            ).all()
        )
        breaks = find_alternation_breaks(events)
        add("clock_event_alternation", "fail" if breaks else "ok", {"event_ids": breaks[:50]})

    report["ok"] = all(check["status"] == "ok" for check in report["checks"])
    return report


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Recompute clock event hashes and check alternation.")
    parser.add_argument("--tenant-id", type=int, required=True)
    parser.add_argument("--from", dest="date_from", type=date.fromisoformat, required=True)
    parser.add_argument("--to", dest="date_to", type=date.fromisoformat, required=True)
    args = parser.parse_args(argv)

    report = run(args.tenant_id, args.date_from, args.date_to)
    print(json.dumps(report, ensure_ascii=False, indent=2))
    return 0 if report["ok"] else 1


if __name__ == "__main__":
    sys.exit(main())
