#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, inspect, select, text
from sqlalchemy.orm import Session

from timeledger.models import CorrectionStatus, MonthlyReport, TimeCorrection, TimeEvent
from timeledger.services.corrections import verify_correction_chain

EXPECTED_HEAD = "0002_absences"
SAMPLE_LIMIT = 20


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def _check(name: str, status: str, details: dict[str, Any]) -> dict[str, Any]:
    return {"name": name, "status": status, "details": details}


def collect_checks(db: Session) -> list[dict[str, Any]]:
    checks: list[dict[str, Any]] = []

    corrections_by_event: dict[int, list[TimeCorrection]] = {}
    for correction in db.scalars(select(TimeCorrection).order_by(TimeCorrection.id.asc())):
        corrections_by_event.setdefault(correction.event_id, []).append(correction)

    chain_issues: list[str] = []
    for event_id, corrections in corrections_by_event.items():
        event = db.get(TimeEvent, event_id)
        if event is not None:
            chain_issues.extend(verify_correction_chain(event, corrections))
    checks.append(
        _check(
            "correction_chain_consistent",
            "fail" if chain_issues else "ok",
            {"events_checked": len(corrections_by_event), "issues": chain_issues[:SAMPLE_LIMIT]},
        )
    )

    double_disposition = db.scalars(
        select(MonthlyReport.id)
        .where(MonthlyReport.accepted_at.is_not(None), MonthlyReport.contested_at.is_not(None))
        .limit(SAMPLE_LIMIT)
    ).all()
    checks.append(
        _check(
            "report_single_disposition",
            "fail" if double_disposition else "ok",
            {"sample_ids": list(double_disposition)},
        )
    )

    # An event may only point at a correction that was actually applied.
    unapplied_pointers = db.execute(
        select(TimeEvent.id, TimeCorrection.id, TimeCorrection.status)
        .join(TimeCorrection, TimeCorrection.id == TimeEvent.last_correction_id)
        .where(TimeCorrection.status != CorrectionStatus.APPROVED)
        .limit(SAMPLE_LIMIT)
    ).all()
    checks.append(
        _check(
            "event_points_at_unapplied_correction",
            "fail" if unapplied_pointers else "ok",
            {
                "rows": [
                    {"event_id": event_id, "correction_id": correction_id, "status": status.value}
                    for event_id, correction_id, status in unapplied_pointers
                ]
            },
        )
    )

    modified_without_trail = db.scalars(
        select(TimeEvent.id)
        .where(TimeEvent.is_modified.is_(True), TimeEvent.last_correction_id.is_(None))
        .limit(SAMPLE_LIMIT)
    ).all()
    checks.append(
        _check(
            "modified_event_without_correction",
            "warn" if modified_without_trail else "ok",
            {"sample_ids": list(modified_without_trail)},
        )
    )
    return checks


def run() -> dict[str, Any]:
    load_env_if_exists()
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    engine = create_engine(database_url)
    report: dict[str, Any] = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    with engine.connect() as conn:
        current_versions: list[str] = []
        if inspect(conn).has_table("alembic_version"):
            current_versions = list(conn.execute(text("select version_num from alembic_version")).scalars())
        report["checks"].append(
            _check(
                "migration_up_to_date",
                "ok" if EXPECTED_HEAD in current_versions else "warn",
                {"expected_head": EXPECTED_HEAD, "current": current_versions},
            )
        )

    with Session(engine) as db:
        report["checks"].extend(collect_checks(db))

    report["ok"] = all(item["status"] != "fail" for item in report["checks"])
    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
