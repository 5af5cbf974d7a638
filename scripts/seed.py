"""Seed database with a demo connection, token and notification preferences."""

from __future__ import annotations

import os

from adsentry.db.migrate import run_migrations
from adsentry.db.session import create_engine_from_env
from adsentry.db.tables import amazon_connections, amazon_tokens, user_prefs
from adsentry.db.upsert import upsert
from adsentry.utils.dates import utc_now

DEMO_PROFILE_ID = os.environ.get("DEMO_PROFILE_ID", "1234567890")
DEMO_USER_ID = "demo-user"


def main() -> None:
    engine = create_engine_from_env()
    run_migrations(engine)
    now = utc_now()
    with engine.begin() as conn:
        upsert(
            conn,
            amazon_connections,
            [
                {
                    "profile_id": DEMO_PROFILE_ID,
                    "user_id": DEMO_USER_ID,
                    "marketplace_id": "ATVPDKIKX0DER",
                    "advertising_api_endpoint": "https://advertising-api.amazon.com",
                    "status": "active",
                    "updated_at": now,
                }
            ],
            conflict_columns=("profile_id",),
        )
        upsert(
            conn,
            amazon_tokens,
            [
                {
                    "profile_id": DEMO_PROFILE_ID,
                    "refresh_token": os.environ.get("DEMO_REFRESH_TOKEN", "demo-refresh-token"),
                    "updated_at": now,
                }
            ],
            conflict_columns=("profile_id",),
        )
        upsert(
            conn,
            user_prefs,
            [{"user_id": DEMO_USER_ID, "email": "demo@example.com", "slack_webhook": None}],
            conflict_columns=("user_id",),
        )
    print("Seed complete")


if __name__ == "__main__":
    main()
