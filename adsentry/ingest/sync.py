"""Full and incremental entity sync for one profile."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.engine import Engine

from adsentry.ingest import expand_entity
from adsentry.ingest.amazon_client import AmazonAdsClient, AmazonApiError
from adsentry.ingest.fetcher import PAGE_SIZE, PagedEntityFetcher
from adsentry.ingest.sync_state import (
    advance_sync_state,
    create_sync_run,
    finish_sync_run,
    get_sync_state,
)
from adsentry.ingest.upserter import EntityUpserter
from adsentry.utils.dates import utc_now

logger = logging.getLogger(__name__)

SYNC_MODES = ("full", "incremental")
OVERLAP_HOURS = float(os.environ.get("SYNC_OVERLAP_HOURS", 25))
BACKFILL_DAYS = float(os.environ.get("SYNC_BACKFILL_DAYS", 30))


def compute_since(
    mode: str,
    watermark: datetime | None,
    now: datetime,
    *,
    overlap_hours: float = OVERLAP_HOURS,
    backfill_days: float = BACKFILL_DAYS,
) -> datetime | None:
    """Lower bound on remote update time for a run; ``None`` means fetch everything."""
    if mode == "full":
        return None
    if watermark is None:
        return now - timedelta(days=backfill_days)
    return watermark - timedelta(hours=overlap_hours)


@dataclass(slots=True)
class EntitySyncResult:
    entity_type: str
    mode: str
    status: str
    run_id: int | None = None
    items_upserted: int = 0
    items_skipped: int = 0
    pages_fetched: int = 0
    since: datetime | None = None
    high_watermark: datetime | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    status_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entityType": self.entity_type,
            "mode": self.mode,
            "status": self.status,
            "runId": self.run_id,
            "itemsUpserted": self.items_upserted,
            "itemsSkipped": self.items_skipped,
            "pagesFetched": self.pages_fetched,
            "since": self.since.isoformat() if self.since else None,
            "highWatermark": self.high_watermark.isoformat() if self.high_watermark else None,
            "warnings": list(self.warnings),
            "error": self.error,
            "statusCode": self.status_code,
        }


@dataclass(slots=True)
class ProfileSyncSummary:
    profile_id: str
    mode: str
    results: list[EntitySyncResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(result.status == "success" for result in self.results)

    @property
    def errors(self) -> list[str]:
        return [f"{r.entity_type}: {r.error}" for r in self.results if r.status == "error"]

    @property
    def warnings(self) -> list[str]:
        return [warning for result in self.results for warning in result.warnings]

    def to_dict(self) -> dict[str, Any]:
        return {
            "profileId": self.profile_id,
            "mode": self.mode,
            "success": self.ok,
            "itemsUpserted": sum(r.items_upserted for r in self.results),
            "pagesFetched": sum(r.pages_fetched for r in self.results),
            "results": {r.entity_type: r.to_dict() for r in self.results},
            "warnings": self.warnings,
            "errors": self.errors,
        }


class SyncOrchestrator:
    """Drives fetch -> upsert -> watermark for the client's profile.

    Pages are processed strictly in order. Database work runs in the default
    executor so the event loop stays free for HTTP.
    """

    def __init__(
        self,
        engine: Engine,
        client: AmazonAdsClient,
        *,
        upserter: EntityUpserter | None = None,
        clock: Callable[[], datetime] = utc_now,
        page_size: int = PAGE_SIZE,
    ) -> None:
        self.engine = engine
        self.client = client
        self.upserter = upserter or EntityUpserter(engine, clock=clock)
        self._clock = clock
        self.page_size = page_size

    @property
    def profile_id(self) -> str:
        return self.client.profile_id

    async def sync_profile(self, entity: str = "all", mode: str = "incremental") -> ProfileSyncSummary:
        if mode not in SYNC_MODES:
            raise ValueError(f"Unknown sync mode: {mode}")
        summary = ProfileSyncSummary(profile_id=self.profile_id, mode=mode)
        for entity_type in expand_entity(entity):
            summary.results.append(await self.sync_entity(entity_type, mode))
        logger.info(
            "Profile %s %s sync finished: %s ok, %s failed",
            self.profile_id, mode,
            sum(1 for r in summary.results if r.status == "success"), len(summary.errors),
        )
        return summary

    async def sync_entity(self, entity_type: str, mode: str = "incremental") -> EntitySyncResult:
        loop = asyncio.get_running_loop()
        profile_id = self.profile_id
        state = await loop.run_in_executor(None, get_sync_state, self.engine, profile_id, entity_type)
        started_at = self._clock()
        since = compute_since(mode, state.high_watermark, started_at)
        run_id = await loop.run_in_executor(
            None,
            lambda: create_sync_run(
                self.engine, profile_id, entity_type, mode=mode, since=since, started_at=started_at
            ),
        )
        result = EntitySyncResult(entity_type=entity_type, mode=mode, status="running", run_id=run_id, since=since)
        logger.info(
            "Sync run %s started: profile=%s entity=%s mode=%s since=%s",
            run_id, profile_id, entity_type, mode, since,
        )

        fetcher = PagedEntityFetcher(self.client, entity_type, since=since, page_size=self.page_size)
        running_max: datetime | None = None
        try:
            async for page in fetcher:
                outcome = await loop.run_in_executor(
                    None, self.upserter.upsert_page, profile_id, entity_type, page.items
                )
                result.items_upserted += outcome.upserted
                result.items_skipped += outcome.skipped
                result.warnings.extend(outcome.warnings)
                if outcome.high_watermark and (running_max is None or outcome.high_watermark > running_max):
                    running_max = outcome.high_watermark
            state = await loop.run_in_executor(
                None,
                lambda: advance_sync_state(
                    self.engine, profile_id, entity_type, mode=mode, running_max=running_max, now=self._clock()
                ),
            )
            result.high_watermark = state.high_watermark
            result.status = "success"
        except Exception as exc:
            result.status = "error"
            result.error = str(exc)
            if isinstance(exc, AmazonApiError):
                result.status_code = exc.status_code
            logger.exception("Sync run %s failed for %s/%s", run_id, profile_id, entity_type)
        finally:
            if result.status == "running":
                result.status = "error"
                result.error = "interrupted"
            result.pages_fetched = fetcher.pages_fetched
            await loop.run_in_executor(
                None,
                lambda: finish_sync_run(
                    self.engine,
                    run_id,
                    status=result.status,
                    now=self._clock(),
                    items_upserted=result.items_upserted,
                    items_skipped=result.items_skipped,
                    pages_fetched=result.pages_fetched,
                    warnings=result.warnings,
                    error=result.error,
                ),
            )
        logger.info(
            "Sync run %s %s: %s upserted, %s skipped, %s pages",
            run_id, result.status, result.items_upserted, result.items_skipped, result.pages_fetched,
        )
        return result
