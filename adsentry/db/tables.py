"""Table definitions shared by the sync and anomaly subsystems."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()


def _ts(name: str, **kwargs) -> Column:
    return Column(name, DateTime(timezone=True), **kwargs)


amazon_connections = Table(
    "amazon_connections",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("profile_id", Text, nullable=False, unique=True),
    Column("user_id", Text, nullable=False),
    Column("marketplace_id", Text),
    Column("advertising_api_endpoint", Text),
    Column("status", Text, nullable=False, default="active"),
    _ts("token_expires_at"),
    _ts("updated_at"),
)

amazon_tokens = Table(
    "amazon_tokens",
    metadata,
    Column("profile_id", Text, primary_key=True),
    Column("access_token", Text),
    Column("refresh_token", Text, nullable=False),
    _ts("expires_at"),
    _ts("updated_at"),
)

entity_campaigns = Table(
    "entity_campaigns",
    metadata,
    Column("profile_id", Text, primary_key=True),
    Column("campaign_id", Text, primary_key=True),
    Column("name", Text),
    Column("campaign_type", Text),
    Column("targeting_type", Text),
    Column("state", Text),
    Column("serving_status", Text),
    Column("daily_budget_micros", BigInteger),
    Column("bidding", JSON),
    Column("start_date", Text),
    Column("end_date", Text),
    _ts("last_updated_time"),
    _ts("synced_at"),
)

entity_ad_groups = Table(
    "entity_ad_groups",
    metadata,
    Column("profile_id", Text, primary_key=True),
    Column("ad_group_id", Text, primary_key=True),
    Column("campaign_id", Text),
    Column("name", Text),
    Column("state", Text),
    Column("serving_status", Text),
    Column("default_bid_micros", BigInteger),
    _ts("last_updated_time"),
    _ts("synced_at"),
)

entity_ads = Table(
    "entity_ads",
    metadata,
    Column("profile_id", Text, primary_key=True),
    Column("ad_id", Text, primary_key=True),
    Column("campaign_id", Text),
    Column("ad_group_id", Text),
    Column("state", Text),
    Column("serving_status", Text),
    Column("creative", JSON),
    _ts("last_updated_time"),
    _ts("synced_at"),
)

entity_targets = Table(
    "entity_targets",
    metadata,
    Column("profile_id", Text, primary_key=True),
    Column("target_id", Text, primary_key=True),
    Column("campaign_id", Text),
    Column("ad_group_id", Text),
    Column("target_kind", Text),
    Column("expression", JSON),
    Column("match_type", Text),
    Column("state", Text),
    Column("bid_micros", BigInteger),
    _ts("last_updated_time"),
    _ts("synced_at"),
)

sync_state = Table(
    "sync_state",
    metadata,
    Column("profile_id", Text, primary_key=True),
    Column("entity_type", Text, primary_key=True),
    _ts("high_watermark"),
    _ts("last_full_sync_at"),
    _ts("last_incremental_sync_at"),
    _ts("updated_at"),
)

sync_runs = Table(
    "sync_runs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("profile_id", Text, nullable=False),
    Column("entity_type", Text, nullable=False),
    Column("mode", Text, nullable=False),
    Column("status", Text, nullable=False),
    Column("items_upserted", Integer, nullable=False, default=0),
    Column("items_skipped", Integer, nullable=False, default=0),
    Column("pages_fetched", Integer, nullable=False, default=0),
    _ts("since"),
    _ts("started_at", nullable=False),
    _ts("finished_at"),
    Column("error", Text),
    Column("warnings", JSON),
)

ams_sp_traffic = Table(
    "ams_sp_traffic",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("profile_id", Text, nullable=False),
    Column("campaign_id", Text),
    Column("ad_group_id", Text),
    _ts("hour_start", nullable=False),
    Column("cost", Float),
    Column("clicks", Integer),
    Column("impressions", Integer),
    Index("ix_ams_sp_traffic_profile_hour", "profile_id", "hour_start"),
)

ams_sp_conversion = Table(
    "ams_sp_conversion",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("profile_id", Text, nullable=False),
    Column("campaign_id", Text),
    Column("ad_group_id", Text),
    _ts("hour_start", nullable=False),
    Column("attributed_sales", Float),
    Column("attributed_conversions", Integer),
    Index("ix_ams_sp_conversion_profile_hour", "profile_id", "hour_start"),
)

campaign_daily_facts = Table(
    "campaign_daily_facts",
    metadata,
    Column("profile_id", Text, primary_key=True),
    Column("campaign_id", Text, primary_key=True),
    Column("date", Date, primary_key=True),
    Column("cost_micros", BigInteger),
    Column("sales_micros", BigInteger),
    Column("conversions", Integer),
    Column("clicks", Integer),
    Column("impressions", Integer),
)

ad_group_daily_facts = Table(
    "ad_group_daily_facts",
    metadata,
    Column("profile_id", Text, primary_key=True),
    Column("ad_group_id", Text, primary_key=True),
    Column("date", Date, primary_key=True),
    Column("campaign_id", Text),
    Column("cost_micros", BigInteger),
    Column("sales_micros", BigInteger),
    Column("conversions", Integer),
    Column("clicks", Integer),
    Column("impressions", Integer),
)

anomaly_settings = Table(
    "anomaly_settings",
    metadata,
    Column("profile_id", Text, primary_key=True),
    Column("enabled", Boolean),
    Column("intraday_enabled", Boolean),
    Column("daily_enabled", Boolean),
    Column("warn_threshold", Float),
    Column("critical_threshold", Float),
    Column("metric_thresholds", JSON),
    Column("intraday_cooldown_hours", Float),
    Column("daily_cooldown_hours", Float),
    Column("notify_on_warn", Boolean),
    Column("notify_on_critical", Boolean),
)

anomaly_runs = Table(
    "anomaly_runs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("profile_id", Text, nullable=False),
    Column("scope", Text, nullable=False),
    Column("time_window", Text, nullable=False),
    Column("status", Text, nullable=False),
    _ts("started_at", nullable=False),
    _ts("finished_at"),
    Column("checked", Integer, nullable=False, default=0),
    Column("anomalies_found", Integer, nullable=False, default=0),
    Column("skipped_points", Integer, nullable=False, default=0),
    Column("error", Text),
)

anomalies = Table(
    "anomalies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("profile_id", Text, nullable=False),
    Column("scope", Text, nullable=False),
    Column("entity_id", Text, nullable=False),
    Column("metric", Text, nullable=False),
    Column("time_window", Text, nullable=False),
    _ts("ts", nullable=False),
    Column("value", Float, nullable=False),
    Column("baseline", Float, nullable=False),
    Column("mad", Float),
    Column("score", Float, nullable=False),
    Column("direction", Text, nullable=False),
    Column("severity", Text, nullable=False),
    Column("fingerprint", Text, nullable=False),
    Column("state", Text, nullable=False, default="new"),
    _ts("created_at", nullable=False),
    UniqueConstraint("fingerprint", "ts", name="uq_anomalies_fingerprint_ts"),
    Index("ix_anomalies_fingerprint_created", "fingerprint", "created_at"),
)

automation_rules = Table(
    "automation_rules",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Text, nullable=False),
    Column("profile_id", Text, nullable=False),
    Column("name", Text),
)

alerts = Table(
    "alerts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("rule_id", Integer),
    Column("profile_id", Text, nullable=False),
    Column("entity_type", Text),
    Column("entity_id", Text),
    Column("title", Text, nullable=False),
    Column("message", Text, nullable=False),
    Column("level", Text, nullable=False),
    Column("state", Text, nullable=False, default="new"),
    Column("data", JSON),
    _ts("created_at", nullable=False),
)

user_prefs = Table(
    "user_prefs",
    metadata,
    Column("user_id", Text, primary_key=True),
    Column("email", Text),
    Column("slack_webhook", Text),
)

notifications_outbox = Table(
    "notifications_outbox",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Text, nullable=False),
    Column("channel", Text, nullable=False),
    Column("subject", Text, nullable=False),
    Column("body", Text, nullable=False),
    Column("payload", JSON),
    Column("status", Text, nullable=False, default="queued"),
    _ts("created_at", nullable=False),
)
