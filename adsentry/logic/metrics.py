"""Reduction of raw fact rows into named advertising metrics."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.engine import Engine

from adsentry.db.tables import ad_group_daily_facts, ams_sp_conversion, ams_sp_traffic, campaign_daily_facts
from adsentry.utils.dates import day_start, ensure_utc, hour_bucket, utc_now

logger = logging.getLogger(__name__)

METRICS = ("spend", "sales", "acos", "cvr", "ctr", "cpc", "impressions")
SCOPES = ("campaign", "ad_group", "account")
WINDOWS = ("intraday", "daily")
MICROS = 1_000_000


@dataclass(slots=True)
class FactTotals:
    spend: float = 0.0
    sales: float = 0.0
    conversions: int = 0
    clicks: int = 0
    impressions: int = 0

    def add(self, other: FactTotals) -> None:
        self.spend += other.spend
        self.sales += other.sales
        self.conversions += other.conversions
        self.clicks += other.clicks
        self.impressions += other.impressions


@dataclass(slots=True)
class MetricDataPoint:
    entity_id: str
    metric: str
    value: float
    ts: datetime


@dataclass(slots=True)
class SkippedPoint:
    entity_id: str
    metric: str
    ts: datetime
    reason: str


@dataclass(slots=True)
class MetricBatch:
    points: list[MetricDataPoint]
    skipped: list[SkippedPoint]


def derive_metric(metric: str, totals: FactTotals) -> float | None:
    """Named metric from summed facts; ``None`` when its denominator is zero."""
    if metric == "spend":
        return totals.spend
    if metric == "sales":
        return totals.sales
    if metric == "impressions":
        return float(totals.impressions)
    if metric == "acos":
        return totals.spend / totals.sales * 100 if totals.sales else None
    if metric == "cvr":
        return totals.conversions / totals.clicks * 100 if totals.clicks else None
    if metric == "ctr":
        return totals.clicks / totals.impressions * 100 if totals.impressions else None
    if metric == "cpc":
        return totals.spend / totals.clicks if totals.clicks else None
    raise ValueError(f"Unknown metric: {metric}")


Totals = dict[tuple[str, datetime], FactTotals]


class MetricAggregator:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def aggregate(
        self,
        profile_id: str,
        scope: str,
        metric: str,
        window: str,
        *,
        now: datetime | None = None,
    ) -> MetricBatch:
        return self.points_for(self.current_totals(profile_id, scope, window, now=now), metric)

    def current_totals(
        self,
        profile_id: str,
        scope: str,
        window: str,
        *,
        now: datetime | None = None,
    ) -> Totals:
        """Totals for the buckets under observation.

        Intraday covers today's hours up to ``now``; daily covers yesterday
        and today, since the latest day's facts usually land late.
        """
        now = ensure_utc(now or utc_now())
        today = now.date()
        if window == "intraday":
            return self.hourly_totals(profile_id, scope, day_start(today), hour_bucket(now) + timedelta(hours=1))
        if window == "daily":
            return self.daily_totals(profile_id, scope, today - timedelta(days=1), today)
        raise ValueError(f"Unknown window: {window}")

    @staticmethod
    def points_for(totals: Totals, metric: str) -> MetricBatch:
        points: list[MetricDataPoint] = []
        skipped: list[SkippedPoint] = []
        for (entity_id, ts), facts in sorted(totals.items(), key=lambda item: item[0]):
            value = derive_metric(metric, facts)
            if value is None:
                skipped.append(SkippedPoint(entity_id, metric, ts, f"{metric} undefined (zero denominator)"))
                continue
            points.append(MetricDataPoint(entity_id, metric, value, ts))
        return MetricBatch(points=points, skipped=skipped)

    def hourly_totals(self, profile_id: str, scope: str, start: datetime, end: datetime) -> Totals:
        """Traffic joined with conversions per (entity, hour) for ``start <= hour < end``."""
        entity_column = _entity_column(scope)
        totals: Totals = defaultdict(FactTotals)
        with self.engine.connect() as conn:
            traffic = conn.execute(
                select(ams_sp_traffic).where(
                    ams_sp_traffic.c.profile_id == profile_id,
                    ams_sp_traffic.c.hour_start >= start,
                    ams_sp_traffic.c.hour_start < end,
                )
            ).mappings().all()
            conversions = conn.execute(
                select(ams_sp_conversion).where(
                    ams_sp_conversion.c.profile_id == profile_id,
                    ams_sp_conversion.c.hour_start >= start,
                    ams_sp_conversion.c.hour_start < end,
                )
            ).mappings().all()
        for row in traffic:
            key = _key(row, entity_column)
            if key is None:
                continue
            totals[key].add(
                FactTotals(spend=row["cost"] or 0.0, clicks=row["clicks"] or 0, impressions=row["impressions"] or 0)
            )
        for row in conversions:
            key = _key(row, entity_column)
            if key is None:
                continue
            totals[key].add(
                FactTotals(sales=row["attributed_sales"] or 0.0, conversions=row["attributed_conversions"] or 0)
            )
        return dict(totals)

    def daily_totals(self, profile_id: str, scope: str, start: date, end: date) -> Totals:
        """Daily facts per (entity, day) for ``start <= day <= end``; money converted from micros."""
        if scope == "ad_group":
            table, entity_column = ad_group_daily_facts, "ad_group_id"
        else:
            table, entity_column = campaign_daily_facts, _entity_column(scope)
        totals: Totals = defaultdict(FactTotals)
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(table).where(
                    table.c.profile_id == profile_id,
                    table.c.date >= start,
                    table.c.date <= end,
                )
            ).mappings().all()
        for row in rows:
            entity_id = row[entity_column]
            if entity_id is None:
                continue
            totals[(str(entity_id), day_start(row["date"]))].add(
                FactTotals(
                    spend=(row["cost_micros"] or 0) / MICROS,
                    sales=(row["sales_micros"] or 0) / MICROS,
                    conversions=row["conversions"] or 0,
                    clicks=row["clicks"] or 0,
                    impressions=row["impressions"] or 0,
                )
            )
        return dict(totals)


def _entity_column(scope: str) -> str:
    if scope == "campaign":
        return "campaign_id"
    if scope == "ad_group":
        return "ad_group_id"
    if scope == "account":
        return "profile_id"
    raise ValueError(f"Unknown scope: {scope}")


def _key(row: Any, entity_column: str) -> tuple[str, datetime] | None:
    entity_id = row[entity_column]
    if entity_id is None:
        return None
    return str(entity_id), hour_bucket(row["hour_start"])


def values_for(totals: Totals, entity_id: str, metric: str, buckets: Iterable[datetime] | None = None) -> list[float]:
    """Defined metric values of one entity, optionally restricted to ``buckets``."""
    wanted = set(buckets) if buckets is not None else None
    values = []
    for (key_entity, ts), facts in totals.items():
        if key_entity != entity_id or (wanted is not None and ts not in wanted):
            continue
        value = derive_metric(metric, facts)
        if value is not None:
            values.append(value)
    return values
