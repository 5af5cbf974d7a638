"""Anomaly detection job."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from sqlalchemy import insert, update
from sqlalchemy.engine import Engine

from adsentry.db.session import create_engine_from_env
from adsentry.db.tables import anomaly_runs
from adsentry.ingest.connections import active_connections
from adsentry.logic.anomalies import AnomalyDetector
from adsentry.logic.detection_settings import load_settings
from adsentry.logic.metrics import SCOPES, WINDOWS
from adsentry.utils.dates import utc_now
from adsentry.utils.env import load_env_file

logger = logging.getLogger(__name__)

INTER_PROFILE_DELAY = float(os.environ.get("INTER_PROFILE_DELAY_SECONDS", 1.0))


async def run_anomaly_detection(
    profile_id: str | None = None,
    scope: str = "campaign",
    window: str = "intraday",
    *,
    engine: Engine | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], datetime] = utc_now,
) -> dict[str, Any]:
    """Detect anomalies for one profile, or every active profile when ``profile_id`` is omitted."""
    if scope not in SCOPES:
        raise ValueError(f"Unknown scope: {scope}")
    if window not in WINDOWS:
        raise ValueError(f"Unknown window: {window}")
    load_env_file()
    engine = engine or create_engine_from_env()
    loop = asyncio.get_running_loop()

    run_id = await loop.run_in_executor(
        None, _start_run, engine, profile_id or "all", scope, window, clock()
    )
    if profile_id:
        profile_ids = [profile_id]
    else:
        profile_ids = [c.profile_id for c in await loop.run_in_executor(None, active_connections, engine)]

    detector = AnomalyDetector(engine, clock=clock)
    summary: dict[str, Any] = {
        "runId": run_id,
        "scope": scope,
        "window": window,
        "profilesChecked": 0,
        "profilesSkipped": 0,
        "totalChecked": 0,
        "anomaliesFound": 0,
        "alertsCreated": 0,
        "skippedPoints": 0,
        "failedPoints": 0,
        "errors": [],
    }
    for index, pid in enumerate(profile_ids):
        if index:
            await sleep(INTER_PROFILE_DELAY)
        try:
            settings = await loop.run_in_executor(None, load_settings, engine, pid)
            if not settings.window_enabled(window):
                logger.info("Anomaly detection disabled for profile %s (%s)", pid, window)
                summary["profilesSkipped"] += 1
                continue
            report = await loop.run_in_executor(
                None, lambda: detector.detect_for_profile(pid, scope, window, settings=settings)
            )
        except Exception as exc:
            logger.exception("Anomaly detection failed for profile %s", pid)
            summary["errors"].append({"profileId": pid, "error": str(exc)})
            continue
        summary["profilesChecked"] += 1
        summary["totalChecked"] += report.checked
        summary["anomaliesFound"] += len(report.anomalies)
        summary["alertsCreated"] += report.alerts_created
        summary["skippedPoints"] += len(report.skipped)
        summary["failedPoints"] += report.failed

    status = "error" if summary["errors"] and not summary["profilesChecked"] else "success"
    await loop.run_in_executor(None, _finish_run, engine, run_id, status, summary, clock())
    summary["success"] = status == "success"
    logger.info(
        "Anomaly run %s %s: %s profiles, %s checked, %s anomalies",
        run_id, status, summary["profilesChecked"], summary["totalChecked"], summary["anomaliesFound"],
    )
    return summary


def _start_run(engine: Engine, profile_id: str, scope: str, window: str, started_at: datetime) -> int:
    with engine.begin() as conn:
        result = conn.execute(
            insert(anomaly_runs).values(
                profile_id=profile_id,
                scope=scope,
                time_window=window,
                status="running",
                started_at=started_at,
            )
        )
        return int(result.inserted_primary_key[0])


def _finish_run(engine: Engine, run_id: int, status: str, summary: dict[str, Any], now: datetime) -> None:
    errors = "; ".join(f"{e['profileId']}: {e['error']}" for e in summary["errors"]) or None
    with engine.begin() as conn:
        conn.execute(
            update(anomaly_runs)
            .where(anomaly_runs.c.id == run_id)
            .values(
                status=status,
                finished_at=now,
                checked=summary["totalChecked"],
                anomalies_found=summary["anomaliesFound"],
                skipped_points=summary["skippedPoints"],
                error=errors,
            )
        )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_anomaly_detection())
