"""Robust historical baselines (median and MAD)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Sequence

import numpy as np

from adsentry.logic.metrics import MetricAggregator, Totals, values_for
from adsentry.utils.dates import ensure_utc, same_hour_prior_weeks

BASELINE_DAYS = int(os.environ.get("BASELINE_DAYS", 28))
BASELINE_WEEKS = int(os.environ.get("BASELINE_WEEKS", 4))
MIN_POINTS = 3


@dataclass(slots=True)
class Baseline:
    median: float
    mad: float
    points: int


def median(values: Sequence[float]) -> float:
    return float(np.median(np.asarray(values, dtype=float)))


def mad(values: Sequence[float]) -> float:
    arr = np.asarray(values, dtype=float)
    return float(np.median(np.abs(arr - np.median(arr))))


def compute_baseline(values: Sequence[float], *, min_points: int = MIN_POINTS) -> Baseline | None:
    """Median and MAD of ``values``, or ``None`` with fewer than ``min_points`` values."""
    if len(values) < min_points:
        return None
    return Baseline(median=median(values), mad=mad(values), points=len(values))


def intraday_sample_hours(ts: datetime, weeks: int = BASELINE_WEEKS) -> list[datetime]:
    return same_hour_prior_weeks(ts, weeks)


def daily_sample_range(day: date, days: int = BASELINE_DAYS) -> tuple[date, date]:
    """Inclusive trailing window ending the day before ``day``."""
    return day - timedelta(days=days), day - timedelta(days=1)


class BaselineEstimator:
    """Baselines per entity, reading history through a :class:`MetricAggregator`.

    Intraday history is the same hour on the same weekday for each prior week;
    daily history is the trailing window of days before the observed day.
    Fact totals are cached per instance, so one estimator should live for a
    single detection pass.
    """

    def __init__(
        self,
        aggregator: MetricAggregator,
        *,
        days: int = BASELINE_DAYS,
        weeks: int = BASELINE_WEEKS,
        min_points: int = MIN_POINTS,
    ) -> None:
        self.aggregator = aggregator
        self.days = days
        self.weeks = weeks
        self.min_points = min_points
        self._cache: dict[tuple, Totals] = {}

    def baseline_for(
        self,
        profile_id: str,
        scope: str,
        metric: str,
        window: str,
        entity_id: str,
        ts: datetime,
    ) -> Baseline | None:
        return compute_baseline(
            self.history(profile_id, scope, metric, window, entity_id, ts),
            min_points=self.min_points,
        )

    def history(
        self,
        profile_id: str,
        scope: str,
        metric: str,
        window: str,
        entity_id: str,
        ts: datetime,
    ) -> list[float]:
        ts = ensure_utc(ts)
        if window == "intraday":
            values: list[float] = []
            for hour in intraday_sample_hours(ts, self.weeks):
                totals = self._hour(profile_id, scope, hour)
                values.extend(values_for(totals, entity_id, metric))
            return values
        if window == "daily":
            return values_for(self._days(profile_id, scope, ts.date()), entity_id, metric)
        raise ValueError(f"Unknown window: {window}")

    def _hour(self, profile_id: str, scope: str, hour: datetime) -> Totals:
        key = ("hour", profile_id, scope, hour)
        if key not in self._cache:
            self._cache[key] = self.aggregator.hourly_totals(profile_id, scope, hour, hour + timedelta(hours=1))
        return self._cache[key]

    def _days(self, profile_id: str, scope: str, day: date) -> Totals:
        key = ("day", profile_id, scope, day)
        if key not in self._cache:
            start, end = daily_sample_range(day, self.days)
            self._cache[key] = self.aggregator.daily_totals(profile_id, scope, start, end)
        return self._cache[key]
