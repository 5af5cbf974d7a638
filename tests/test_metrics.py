from datetime import date, datetime, timezone

import pytest

from adsentry.logic.metrics import FactTotals, MetricAggregator, derive_metric

from conftest import NOW, PROFILE_ID, seed_daily, seed_hour


def test_derived_metric_formulas():
    totals = FactTotals(spend=20.0, sales=80.0, conversions=4, clicks=40, impressions=2000)
    assert derive_metric("spend", totals) == 20.0
    assert derive_metric("sales", totals) == 80.0
    assert derive_metric("acos", totals) == 25.0
    assert derive_metric("cvr", totals) == 10.0
    assert derive_metric("ctr", totals) == 2.0
    assert derive_metric("cpc", totals) == 0.5
    assert derive_metric("impressions", totals) == 2000.0


def test_zero_denominators_are_undefined():
    empty = FactTotals(spend=50.0)
    for metric in ("acos", "cvr", "ctr", "cpc"):
        assert derive_metric(metric, empty) is None
    with pytest.raises(ValueError):
        derive_metric("roas", empty)


def test_daily_acos_skips_campaign_without_sales(engine):
    seed_daily(engine, "C1", date(2024, 5, 15), spend=50.0, sales=0.0)
    seed_daily(engine, "C2", date(2024, 5, 15), spend=20.0, sales=80.0)
    batch = MetricAggregator(engine).aggregate(PROFILE_ID, "campaign", "acos", "daily", now=NOW)
    assert [(p.entity_id, p.value) for p in batch.points] == [("C2", 25.0)]
    assert [s.entity_id for s in batch.skipped] == ["C1"]


def test_daily_window_covers_yesterday_and_today(engine):
    seed_daily(engine, "C1", date(2024, 5, 13), spend=1.0)
    seed_daily(engine, "C1", date(2024, 5, 14), spend=2.0)
    seed_daily(engine, "C1", date(2024, 5, 15), spend=3.0)
    batch = MetricAggregator(engine).aggregate(PROFILE_ID, "campaign", "spend", "daily", now=NOW)
    assert [p.value for p in batch.points] == [2.0, 3.0]
    assert batch.points[0].ts == datetime(2024, 5, 14, tzinfo=timezone.utc)


def test_intraday_joins_traffic_and_conversions_per_hour(engine):
    hour = datetime(2024, 5, 15, 9, tzinfo=timezone.utc)
    seed_hour(engine, "C1", hour, spend=10.0, clicks=20, impressions=1000, sales=40.0, conversions=2)
    seed_hour(engine, "C1", hour, spend=5.0, clicks=10, impressions=500)
    seed_hour(engine, "C1", datetime(2024, 5, 14, 9, tzinfo=timezone.utc), spend=99.0)

    aggregator = MetricAggregator(engine)
    acos = aggregator.aggregate(PROFILE_ID, "campaign", "acos", "intraday", now=NOW)
    cvr = aggregator.aggregate(PROFILE_ID, "campaign", "cvr", "intraday", now=NOW)

    assert len(acos.points) == 1
    assert acos.points[0].ts == hour
    assert acos.points[0].value == pytest.approx(15.0 / 40.0 * 100)
    assert cvr.points[0].value == pytest.approx(2 / 30 * 100)


def test_account_scope_rolls_up_to_profile(engine):
    seed_daily(engine, "C1", date(2024, 5, 15), spend=10.0)
    seed_daily(engine, "C2", date(2024, 5, 15), spend=5.0)
    batch = MetricAggregator(engine).aggregate(PROFILE_ID, "account", "spend", "daily", now=NOW)
    assert [(p.entity_id, p.value) for p in batch.points] == [(PROFILE_ID, 15.0)]
