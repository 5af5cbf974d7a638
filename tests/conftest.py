from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from adsentry.db.tables import (
    amazon_connections,
    amazon_tokens,
    ams_sp_conversion,
    ams_sp_traffic,
    campaign_daily_facts,
    metadata,
    user_prefs,
)

PROFILE_ID = "111"
USER_ID = "user-1"
NOW = datetime(2024, 5, 15, 10, 30, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.fixture()
def engine():
    # One shared connection so executor threads see the same in-memory database.
    engine = create_engine(
        "sqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def sleep():
    return RecordingSleep()


@pytest.fixture()
def connected_engine(engine):
    with engine.begin() as conn:
        conn.execute(
            amazon_connections.insert(),
            {
                "profile_id": PROFILE_ID,
                "user_id": USER_ID,
                "marketplace_id": "ATVPDKIKX0DER",
                "advertising_api_endpoint": "https://advertising-api.amazon.com",
                "status": "active",
            },
        )
        conn.execute(
            amazon_tokens.insert(),
            {
                "profile_id": PROFILE_ID,
                "access_token": "stale",
                "refresh_token": "refresh-1",
                "expires_at": datetime(2000, 1, 1, tzinfo=timezone.utc),
            },
        )
        conn.execute(
            user_prefs.insert(),
            {"user_id": USER_ID, "email": "owner@example.com", "slack_webhook": "https://hooks.slack.test/x"},
        )
    return engine


def seed_daily(engine, campaign_id, day, *, spend=0.0, sales=0.0, conversions=0, clicks=0, impressions=0):
    with engine.begin() as conn:
        conn.execute(
            campaign_daily_facts.insert(),
            {
                "profile_id": PROFILE_ID,
                "campaign_id": campaign_id,
                "date": day,
                "cost_micros": round(spend * 1_000_000),
                "sales_micros": round(sales * 1_000_000),
                "conversions": conversions,
                "clicks": clicks,
                "impressions": impressions,
            },
        )


def seed_hour(engine, campaign_id, hour, *, spend=0.0, clicks=0, impressions=0, sales=0.0, conversions=0):
    with engine.begin() as conn:
        conn.execute(
            ams_sp_traffic.insert(),
            {
                "profile_id": PROFILE_ID,
                "campaign_id": campaign_id,
                "ad_group_id": f"{campaign_id}-g",
                "hour_start": hour,
                "cost": spend,
                "clicks": clicks,
                "impressions": impressions,
            },
        )
        if sales or conversions:
            conn.execute(
                ams_sp_conversion.insert(),
                {
                    "profile_id": PROFILE_ID,
                    "campaign_id": campaign_id,
                    "ad_group_id": f"{campaign_id}-g",
                    "hour_start": hour,
                    "attributed_sales": sales,
                    "attributed_conversions": conversions,
                },
            )
