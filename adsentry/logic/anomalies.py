"""Robust z-score anomaly detection with fingerprint/cooldown de-duplication."""

from __future__ import annotations

import hashlib
import logging
import math
import pathlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import yaml
from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from adsentry.db.tables import anomalies
from adsentry.db.upsert import upsert
from adsentry.logic.alerts import AlertDispatcher
from adsentry.logic.baseline import Baseline, BaselineEstimator
from adsentry.logic.detection_settings import (
    CRITICAL_THRESHOLD,
    WARN_THRESHOLD,
    DetectionSettings,
    load_settings,
)
from adsentry.logic.metrics import METRICS, MetricAggregator, MetricDataPoint, SkippedPoint
from adsentry.utils.dates import ensure_utc, hour_bucket, utc_now

logger = logging.getLogger(__name__)

RULES_PATH = pathlib.Path(__file__).with_name("metric_rules.yml")
MAD_SCALE = 0.6745
# Stand-in for an infinite score when MAD is zero; keeps rows JSON-safe.
MAX_SCORE = 1000.0
SEVERITY_RANK = {"info": 1, "warn": 2, "critical": 3}


def load_metric_rules(path: pathlib.Path = RULES_PATH) -> dict[str, str]:
    data = yaml.safe_load(path.read_text()) or {}
    for metric, direction in data.items():
        if direction not in ("spike", "dip"):
            raise ValueError(f"Invalid direction {direction!r} for metric {metric}")
    return data


METRIC_DIRECTIONS = load_metric_rules()


def robust_z_score(value: float, median: float, mad: float) -> float:
    deviation = value - median
    if mad == 0:
        if deviation == 0:
            return 0.0
        return math.copysign(MAX_SCORE, deviation)
    return MAD_SCALE * deviation / mad


def classify_severity(
    score: float,
    *,
    warn: float = WARN_THRESHOLD,
    critical: float = CRITICAL_THRESHOLD,
) -> str:
    """``|score| < warn`` is info, up to and including ``critical`` is warn, above is critical."""
    magnitude = abs(score)
    if magnitude < warn:
        return "info"
    if magnitude <= critical:
        return "warn"
    return "critical"


def movement(value: float, median: float) -> str | None:
    if value > median:
        return "spike"
    if value < median:
        return "dip"
    return None


def should_flag(metric: str, value: float, median: float) -> bool:
    direction = movement(value, median)
    return direction is not None and METRIC_DIRECTIONS.get(metric) == direction


def time_bucket(ts: datetime, window: str) -> str:
    if window == "intraday":
        return hour_bucket(ts).isoformat()
    return ensure_utc(ts).date().isoformat()


def fingerprint(profile_id: str, scope: str, entity_id: str, metric: str, window: str, ts: datetime) -> str:
    key = "|".join((profile_id, scope, entity_id, metric, window, time_bucket(ts, window)))
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class Anomaly:
    profile_id: str
    scope: str
    entity_id: str
    metric: str
    time_window: str
    ts: datetime
    value: float
    baseline: float
    mad: float
    score: float
    direction: str
    severity: str
    fingerprint: str
    state: str = "new"
    id: int | None = None

    def to_row(self, created_at: datetime) -> dict[str, Any]:
        return {
            "profile_id": self.profile_id,
            "scope": self.scope,
            "entity_id": self.entity_id,
            "metric": self.metric,
            "time_window": self.time_window,
            "ts": self.ts,
            "value": self.value,
            "baseline": self.baseline,
            "mad": self.mad,
            "score": self.score,
            "direction": self.direction,
            "severity": self.severity,
            "fingerprint": self.fingerprint,
            "state": self.state,
            "created_at": created_at,
        }


@dataclass(slots=True)
class DetectionReport:
    profile_id: str
    scope: str
    window: str
    checked: int = 0
    without_baseline: int = 0
    suppressed: int = 0
    alerts_created: int = 0
    failed: int = 0
    anomalies: list[Anomaly] = field(default_factory=list)
    skipped: list[SkippedPoint] = field(default_factory=list)


class AnomalyDetector:
    def __init__(
        self,
        engine: Engine,
        *,
        aggregator: MetricAggregator | None = None,
        dispatcher: AlertDispatcher | None = None,
        clock: Callable[[], datetime] = utc_now,
        metrics: tuple[str, ...] = METRICS,
    ) -> None:
        self.engine = engine
        self.aggregator = aggregator or MetricAggregator(engine)
        self.dispatcher = dispatcher or AlertDispatcher(engine, clock=clock)
        self._clock = clock
        self.metrics = metrics

    def detect_for_profile(
        self,
        profile_id: str,
        scope: str,
        window: str,
        *,
        settings: DetectionSettings | None = None,
    ) -> DetectionReport:
        settings = settings or load_settings(self.engine, profile_id)
        estimator = BaselineEstimator(self.aggregator)
        report = DetectionReport(profile_id=profile_id, scope=scope, window=window)
        now = self._clock()
        current = self.aggregator.current_totals(profile_id, scope, window, now=now)
        for metric in self.metrics:
            batch = self.aggregator.points_for(current, metric)
            for skipped in batch.skipped:
                logger.info(
                    "Skipped %s %s %s at %s: %s",
                    profile_id, scope, skipped.entity_id, skipped.ts, skipped.reason,
                )
            report.skipped.extend(batch.skipped)
            for point in batch.points:
                report.checked += 1
                try:
                    anomaly = self._check_point(point, estimator, profile_id, scope, window, settings, report)
                except Exception:
                    report.failed += 1
                    logger.exception(
                        "Detection failed for %s %s %s %s", profile_id, scope, point.entity_id, metric
                    )
                    continue
                if anomaly is None:
                    continue
                report.anomalies.append(anomaly)
                try:
                    alert_id = self.dispatcher.dispatch(anomaly, settings=settings)
                except Exception:
                    logger.exception("Alert dispatch failed for anomaly %s", anomaly.id)
                    continue
                if alert_id is not None:
                    report.alerts_created += 1
        logger.info(
            "Detection %s/%s/%s: checked=%s anomalies=%s suppressed=%s skipped=%s no_baseline=%s failed=%s",
            profile_id, scope, window, report.checked, len(report.anomalies),
            report.suppressed, len(report.skipped), report.without_baseline, report.failed,
        )
        return report

    def _check_point(
        self,
        point: MetricDataPoint,
        estimator: BaselineEstimator,
        profile_id: str,
        scope: str,
        window: str,
        settings: DetectionSettings,
        report: DetectionReport,
    ) -> Anomaly | None:
        baseline = estimator.baseline_for(profile_id, scope, point.metric, window, point.entity_id, point.ts)
        if baseline is None:
            report.without_baseline += 1
            return None
        anomaly = self.evaluate(point, baseline, profile_id=profile_id, scope=scope, window=window, settings=settings)
        if anomaly is None:
            return None
        anomaly_id = self.record(anomaly, cooldown=settings.cooldown_for(window))
        if anomaly_id is None:
            report.suppressed += 1
            return None
        anomaly.id = anomaly_id
        return anomaly

    def evaluate(
        self,
        point: MetricDataPoint,
        baseline: Baseline,
        *,
        profile_id: str,
        scope: str,
        window: str,
        settings: DetectionSettings | None = None,
    ) -> Anomaly | None:
        """Anomaly for ``point`` if it is warn/critical and moves in the flagged direction."""
        settings = settings or DetectionSettings()
        score = robust_z_score(point.value, baseline.median, baseline.mad)
        warn, critical = settings.thresholds_for(point.metric)
        severity = classify_severity(score, warn=warn, critical=critical)
        if severity == "info":
            return None
        if not should_flag(point.metric, point.value, baseline.median):
            return None
        return Anomaly(
            profile_id=profile_id,
            scope=scope,
            entity_id=point.entity_id,
            metric=point.metric,
            time_window=window,
            ts=ensure_utc(point.ts),
            value=point.value,
            baseline=baseline.median,
            mad=baseline.mad,
            score=score,
            direction=movement(point.value, baseline.median),
            severity=severity,
            fingerprint=fingerprint(profile_id, scope, point.entity_id, point.metric, window, point.ts),
        )

    def record(self, anomaly: Anomaly, *, cooldown: timedelta) -> int | None:
        """Persist ``anomaly`` unless a recent one with the same fingerprint is at least as severe.

        Returns the row id, or ``None`` when suppressed.
        """
        now = self._clock()
        with self.engine.begin() as conn:
            prior = _latest_severity(conn, anomaly.fingerprint, now - cooldown)
            if prior is not None and SEVERITY_RANK[prior] >= SEVERITY_RANK[anomaly.severity]:
                logger.info(
                    "Suppressed %s %s for %s (%s within cooldown)",
                    anomaly.severity, anomaly.metric, anomaly.entity_id, prior,
                )
                return None
            upsert(
                conn,
                anomalies,
                [anomaly.to_row(now)],
                conflict_columns=("fingerprint", "ts"),
                update_columns=("value", "baseline", "mad", "score", "direction", "severity", "state", "created_at"),
            )
            anomaly_id = conn.execute(
                select(anomalies.c.id).where(
                    anomalies.c.fingerprint == anomaly.fingerprint,
                    anomalies.c.ts == anomaly.ts,
                )
            ).scalar_one()
        logger.info(
            "Recorded %s %s %s for %s/%s (score %.2f)",
            anomaly.severity, anomaly.metric, anomaly.direction, anomaly.scope, anomaly.entity_id, anomaly.score,
        )
        return int(anomaly_id)


def _latest_severity(conn: Connection, fp: str, since: datetime) -> str | None:
    return conn.execute(
        select(anomalies.c.severity)
        .where(anomalies.c.fingerprint == fp, anomalies.c.created_at >= since)
        .order_by(anomalies.c.created_at.desc(), anomalies.c.id.desc())
        .limit(1)
    ).scalar()
