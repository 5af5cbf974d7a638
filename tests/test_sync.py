from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from adsentry.db.tables import sync_runs
from adsentry.ingest.amazon_client import ApiFailure, ApiSuccess
from adsentry.ingest.sync import SyncOrchestrator, compute_since
from adsentry.ingest.sync_state import create_sync_run, finish_sync_run, get_sync_state

from conftest import NOW


class PathClient:
    profile_id = "111"

    def __init__(self, responses):
        self.responses = {path: list(items) for path, items in responses.items()}
        self.calls = []

    async def request(self, method, path, *, params=None, body=None):
        self.calls.append((path, dict(params or {})))
        queue = self.responses.get(path)
        if not queue:
            return ApiSuccess([], 200)
        return queue.pop(0)


def campaign(cid, updated):
    return {"campaignId": cid, "state": "enabled", "lastUpdatedTime": updated}


def runs(engine):
    with engine.connect() as conn:
        return conn.execute(select(sync_runs).order_by(sync_runs.c.id)).mappings().all()


def test_compute_since():
    watermark = datetime(2024, 5, 10, tzinfo=timezone.utc)
    assert compute_since("full", watermark, NOW) is None
    assert compute_since("incremental", None, NOW) == NOW - timedelta(days=30)
    assert compute_since("incremental", watermark, NOW) == watermark - timedelta(hours=25)


@pytest.mark.asyncio
async def test_successful_run_advances_watermark(engine, clock):
    client = PathClient({"/v2/sp/campaigns": [ApiSuccess([campaign("1", "2024-05-14T08:00:00Z")], 200)]})
    result = await SyncOrchestrator(engine, client, clock=clock).sync_entity("campaigns", "incremental")

    assert result.status == "success"
    assert result.items_upserted == 1
    assert result.pages_fetched == 1
    state = get_sync_state(engine, "111", "campaigns")
    assert state.high_watermark == datetime(2024, 5, 14, 8, tzinfo=timezone.utc)
    assert state.last_incremental_sync_at == NOW
    assert state.last_full_sync_at is None
    (run,) = runs(engine)
    assert run["status"] == "success"
    assert run["mode"] == "incremental"
    assert run["items_upserted"] == 1


@pytest.mark.asyncio
async def test_watermark_never_moves_backward(engine, clock):
    first = PathClient({"/v2/sp/campaigns": [ApiSuccess([campaign("1", "2024-05-14T08:00:00Z")], 200)]})
    await SyncOrchestrator(engine, first, clock=clock).sync_entity("campaigns", "incremental")

    # Overlap window returns an older copy; nothing newer exists.
    second = PathClient({"/v2/sp/campaigns": [ApiSuccess([campaign("2", "2024-05-13T20:00:00Z")], 200)]})
    result = await SyncOrchestrator(engine, second, clock=clock).sync_entity("campaigns", "incremental")

    assert result.since == datetime(2024, 5, 13, 7, tzinfo=timezone.utc)
    assert get_sync_state(engine, "111", "campaigns").high_watermark == datetime(2024, 5, 14, 8, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_auth_failure_leaves_state_untouched(engine, clock):
    client = PathClient({"/v2/sp/campaigns": [ApiFailure(error="Forbidden", status_code=403)]})
    result = await SyncOrchestrator(engine, client, clock=clock).sync_entity("campaigns", "full")

    assert result.status == "error"
    assert result.status_code == 403
    assert "403" in result.error
    state = get_sync_state(engine, "111", "campaigns")
    assert state.high_watermark is None
    assert state.last_full_sync_at is None
    (run,) = runs(engine)
    assert run["status"] == "error"
    assert run["finished_at"] >= run["started_at"]


@pytest.mark.asyncio
async def test_failure_after_first_page_does_not_advance(engine, clock):
    page = [campaign(str(i), "2024-05-14T08:00:00Z") for i in range(2)]
    client = PathClient(
        {"/v2/sp/campaigns": [ApiSuccess(page, 200), ApiFailure(error="Internal", status_code=500)]}
    )
    result = await SyncOrchestrator(engine, client, clock=clock, page_size=2).sync_entity("campaigns")

    assert result.status == "error"
    assert result.items_upserted == 2
    assert result.pages_fetched == 1
    assert get_sync_state(engine, "111", "campaigns").high_watermark is None


@pytest.mark.asyncio
async def test_partial_success_is_reported(engine, clock):
    client = PathClient(
        {
            "/v2/sp/campaigns": [ApiSuccess([campaign("1", "2024-05-14T08:00:00Z"), {"name": "broken"}], 200)],
            "/v2/sp/adGroups": [ApiFailure(error="Unauthorized", status_code=401)],
            "/v2/sp/productAds": [ApiSuccess([{"adId": "a1", "campaignId": "1", "adGroupId": "g1"}], 200)],
        }
    )
    summary = await SyncOrchestrator(engine, client, clock=clock).sync_profile("all", "incremental")

    statuses = {r.entity_type: r.status for r in summary.results}
    assert statuses == {"campaigns": "success", "ad_groups": "error", "ads": "success", "targets": "success"}
    assert not summary.ok
    payload = summary.to_dict()
    assert payload["errors"] == ["ad_groups: HTTP 401: Unauthorized"]
    assert len(payload["warnings"]) == 1
    assert payload["results"]["campaigns"]["itemsSkipped"] == 1
    assert len(runs(engine)) == 4


@pytest.mark.asyncio
async def test_state_write_failure_still_finalizes_run(engine, clock, monkeypatch):
    def broken_advance(*args, **kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr("adsentry.ingest.sync.advance_sync_state", broken_advance)
    client = PathClient({"/v2/sp/campaigns": [ApiSuccess([campaign("1", "2024-05-14T08:00:00Z")], 200)]})
    result = await SyncOrchestrator(engine, client, clock=clock).sync_entity("campaigns", "incremental")

    assert result.status == "error"
    assert result.error == "db down"
    assert result.high_watermark is None
    (run,) = runs(engine)
    assert run["status"] == "error"
    assert run["error"] == "db down"
    assert run["finished_at"] is not None
    assert run["items_upserted"] == 1


def test_finished_runs_are_immutable(engine, clock):
    run_id = create_sync_run(engine, "111", "ads", mode="full", since=None, started_at=NOW)
    assert finish_sync_run(engine, run_id, status="success", now=NOW + timedelta(minutes=1))
    assert not finish_sync_run(engine, run_id, status="error", now=NOW + timedelta(minutes=2), error="late")
    (run,) = runs(engine)
    assert run["status"] == "success"
    assert run["error"] is None
