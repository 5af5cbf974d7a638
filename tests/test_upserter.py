from datetime import datetime, timezone

from sqlalchemy import func, select

from adsentry.db.tables import entity_campaigns
from adsentry.ingest.upserter import EntityUpserter

PAGE = [
    {"campaignId": "1", "name": "One", "state": "enabled", "lastUpdatedTime": "2024-05-01T00:00:00Z"},
    {"campaignId": "2", "name": "Two", "state": "paused", "lastUpdatedTime": "2024-05-03T00:00:00Z"},
]


def count_campaigns(engine):
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(entity_campaigns)).scalar_one()


def test_replaying_a_page_is_idempotent(engine, clock):
    upserter = EntityUpserter(engine, clock=clock)
    first = upserter.upsert_page("111", "campaigns", PAGE)
    second = upserter.upsert_page("111", "campaigns", PAGE)
    assert first.upserted == second.upserted == 2
    assert count_campaigns(engine) == 2
    assert first.high_watermark == datetime(2024, 5, 3, tzinfo=timezone.utc)


def test_remote_payload_overwrites_local_row(engine, clock):
    upserter = EntityUpserter(engine, clock=clock)
    upserter.upsert_page("111", "campaigns", PAGE)
    upserter.upsert_page("111", "campaigns", [{"campaignId": "1", "name": "Renamed", "state": "archived"}])
    with engine.connect() as conn:
        row = conn.execute(
            select(entity_campaigns.c.name, entity_campaigns.c.state).where(entity_campaigns.c.campaign_id == "1")
        ).one()
    assert tuple(row) == ("Renamed", "archived")


def test_same_id_in_other_profile_is_separate_row(engine, clock):
    upserter = EntityUpserter(engine, clock=clock)
    upserter.upsert_page("111", "campaigns", PAGE)
    upserter.upsert_page("222", "campaigns", PAGE)
    assert count_campaigns(engine) == 4


def test_malformed_items_are_skipped_with_warning(engine, clock):
    upserter = EntityUpserter(engine, clock=clock)
    result = upserter.upsert_page("111", "campaigns", [{"name": "no id"}, *PAGE, "junk"])
    assert result.upserted == 2
    assert result.skipped == 2
    assert len(result.warnings) == 2
    assert "campaigns[0]" in result.warnings[0]
