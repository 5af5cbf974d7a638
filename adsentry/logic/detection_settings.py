"""Per-profile anomaly detection settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.engine import Engine

from adsentry.db.tables import anomaly_settings

WARN_THRESHOLD = float(os.environ.get("ANOMALY_WARN_THRESHOLD", 2.0))
CRITICAL_THRESHOLD = float(os.environ.get("ANOMALY_CRITICAL_THRESHOLD", 3.5))
INTRADAY_COOLDOWN_HOURS = float(os.environ.get("INTRADAY_COOLDOWN_HOURS", 6))
DAILY_COOLDOWN_HOURS = float(os.environ.get("DAILY_COOLDOWN_HOURS", 48))


@dataclass(slots=True)
class DetectionSettings:
    enabled: bool = True
    intraday_enabled: bool = True
    daily_enabled: bool = True
    warn_threshold: float = WARN_THRESHOLD
    critical_threshold: float = CRITICAL_THRESHOLD
    metric_thresholds: dict[str, dict[str, float]] = field(default_factory=dict)
    intraday_cooldown_hours: float = INTRADAY_COOLDOWN_HOURS
    daily_cooldown_hours: float = DAILY_COOLDOWN_HOURS
    notify_on_warn: bool = True
    notify_on_critical: bool = True

    def window_enabled(self, window: str) -> bool:
        if not self.enabled:
            return False
        return self.intraday_enabled if window == "intraday" else self.daily_enabled

    def thresholds_for(self, metric: str) -> tuple[float, float]:
        override = self.metric_thresholds.get(metric) or {}
        return (
            float(override.get("warn", self.warn_threshold)),
            float(override.get("critical", self.critical_threshold)),
        )

    def cooldown_for(self, window: str) -> timedelta:
        hours = self.intraday_cooldown_hours if window == "intraday" else self.daily_cooldown_hours
        return timedelta(hours=hours)

    def notify_for(self, severity: str) -> bool:
        if severity == "critical":
            return self.notify_on_critical
        if severity == "warn":
            return self.notify_on_warn
        return False


def load_settings(engine: Engine, profile_id: str) -> DetectionSettings:
    """Stored settings for ``profile_id``; unset columns keep the defaults."""
    with engine.connect() as conn:
        row = conn.execute(
            select(anomaly_settings).where(anomaly_settings.c.profile_id == profile_id)
        ).mappings().first()
    settings = DetectionSettings()
    if row is None:
        return settings
    values: dict[str, Any] = {k: v for k, v in row.items() if k != "profile_id" and v is not None}
    for key, value in values.items():
        setattr(settings, key, value)
    return settings
