"""Sync bookkeeping: per-entity watermarks and the run audit trail."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine

from adsentry.db.tables import sync_runs, sync_state
from adsentry.db.upsert import upsert
from adsentry.utils.dates import ensure_utc


@dataclass(slots=True)
class SyncState:
    profile_id: str
    entity_type: str
    high_watermark: datetime | None = None
    last_full_sync_at: datetime | None = None
    last_incremental_sync_at: datetime | None = None


def get_sync_state(engine: Engine, profile_id: str, entity_type: str) -> SyncState:
    with engine.connect() as conn:
        row = conn.execute(
            select(
                sync_state.c.high_watermark,
                sync_state.c.last_full_sync_at,
                sync_state.c.last_incremental_sync_at,
            ).where(
                sync_state.c.profile_id == profile_id,
                sync_state.c.entity_type == entity_type,
            )
        ).first()
    if row is None:
        return SyncState(profile_id, entity_type)
    return SyncState(profile_id, entity_type, *(ensure_utc(value) for value in row))


def advance_sync_state(
    engine: Engine,
    profile_id: str,
    entity_type: str,
    *,
    mode: str,
    running_max: datetime | None,
    now: datetime,
) -> SyncState:
    """Record a successful run. The watermark only ever moves forward."""
    prior = get_sync_state(engine, profile_id, entity_type)
    watermark = prior.high_watermark
    if running_max is not None and (watermark is None or running_max > watermark):
        watermark = running_max
    state = SyncState(
        profile_id,
        entity_type,
        high_watermark=watermark,
        last_full_sync_at=now if mode == "full" else prior.last_full_sync_at,
        last_incremental_sync_at=now if mode == "incremental" else prior.last_incremental_sync_at,
    )
    with engine.begin() as conn:
        upsert(
            conn,
            sync_state,
            [
                {
                    "profile_id": profile_id,
                    "entity_type": entity_type,
                    "high_watermark": state.high_watermark,
                    "last_full_sync_at": state.last_full_sync_at,
                    "last_incremental_sync_at": state.last_incremental_sync_at,
                    "updated_at": now,
                }
            ],
            conflict_columns=("profile_id", "entity_type"),
        )
    return state


def create_sync_run(
    engine: Engine,
    profile_id: str,
    entity_type: str,
    *,
    mode: str,
    since: datetime | None,
    started_at: datetime,
) -> int:
    with engine.begin() as conn:
        result = conn.execute(
            insert(sync_runs).values(
                profile_id=profile_id,
                entity_type=entity_type,
                mode=mode,
                status="running",
                since=since,
                started_at=started_at,
            )
        )
        return int(result.inserted_primary_key[0])


def finish_sync_run(
    engine: Engine,
    run_id: int,
    *,
    status: str,
    now: datetime,
    items_upserted: int = 0,
    items_skipped: int = 0,
    pages_fetched: int = 0,
    warnings: list[str] | None = None,
    error: str | None = None,
) -> bool:
    """Finalise a running SyncRun. Finished runs are never rewritten."""
    with engine.begin() as conn:
        started_at = conn.execute(
            select(sync_runs.c.started_at).where(sync_runs.c.id == run_id)
        ).scalar_one()
        finished_at = max(now, ensure_utc(started_at))
        result = conn.execute(
            update(sync_runs)
            .where(sync_runs.c.id == run_id, sync_runs.c.finished_at.is_(None))
            .values(
                status=status,
                finished_at=finished_at,
                items_upserted=items_upserted,
                items_skipped=items_skipped,
                pages_fetched=pages_fetched,
                warnings=warnings or [],
                error=error,
            )
        )
        return result.rowcount == 1
