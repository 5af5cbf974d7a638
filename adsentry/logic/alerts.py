"""Alert and notification-queue records for detected anomalies."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import insert, select
from sqlalchemy.engine import Connection, Engine

from adsentry.db.tables import alerts, amazon_connections, automation_rules, notifications_outbox, user_prefs
from adsentry.utils.dates import utc_now

if TYPE_CHECKING:
    from adsentry.logic.anomalies import Anomaly
    from adsentry.logic.detection_settings import DetectionSettings

logger = logging.getLogger(__name__)


def build_alert_text(anomaly: Anomaly) -> tuple[str, str]:
    title = f"{anomaly.metric.upper()} {anomaly.direction} detected"
    message = (
        f"{anomaly.scope} {anomaly.entity_id} shows {anomaly.metric} {anomaly.direction} "
        f"of {anomaly.value:.2f} vs baseline {anomaly.baseline:.2f} (z-score: {anomaly.score:.2f})"
    )
    return title, message


def build_notification(anomaly: Anomaly) -> tuple[str, str]:
    subject = f"{anomaly.severity.upper()}: {anomaly.metric.upper()} {anomaly.direction}"
    body = (
        f"Anomaly detected in {anomaly.scope} {anomaly.entity_id}:\n\n"
        f"{anomaly.metric}: {anomaly.value:.2f} (baseline: {anomaly.baseline:.2f})\n"
        f"Z-score: {anomaly.score:.2f}\n"
        f"Severity: {anomaly.severity}"
    )
    return subject, body


class AlertDispatcher:
    """Writes an alert row per persisted anomaly and queues outbound notifications.

    Delivery is someone else's job; rows land in ``notifications_outbox``
    with ``status='queued'``.
    """

    def __init__(self, engine: Engine, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.engine = engine
        self._clock = clock

    def dispatch(self, anomaly: Anomaly, *, settings: DetectionSettings | None = None) -> int | None:
        if anomaly.severity not in ("warn", "critical"):
            return None
        now = self._clock()
        with self.engine.begin() as conn:
            user_id = _owner(conn, anomaly.profile_id)
            if user_id is None:
                logger.warning(
                    "No owner for profile %s; anomaly %s stored without alert",
                    anomaly.profile_id, anomaly.id,
                )
                return None
            title, message = build_alert_text(anomaly)
            alert_id = conn.execute(
                insert(alerts).values(
                    rule_id=_rule_id(conn, user_id, anomaly.profile_id),
                    profile_id=anomaly.profile_id,
                    entity_type=anomaly.scope,
                    entity_id=anomaly.entity_id,
                    title=title,
                    message=message,
                    level=anomaly.severity,
                    state="new",
                    data=_alert_data(anomaly),
                    created_at=now,
                )
            ).inserted_primary_key[0]

            if settings is not None and not settings.notify_for(anomaly.severity):
                return int(alert_id)
            channels = _channels(conn, user_id)
            if channels:
                subject, body = build_notification(anomaly)
                payload = {
                    "anomaly_id": anomaly.id,
                    "profile_id": anomaly.profile_id,
                    "entity_type": anomaly.scope,
                    "entity_id": anomaly.entity_id,
                }
                conn.execute(
                    insert(notifications_outbox),
                    [
                        {
                            "user_id": user_id,
                            "channel": channel,
                            "subject": subject,
                            "body": body,
                            "payload": payload,
                            "status": "queued",
                            "created_at": now,
                        }
                        for channel in channels
                    ],
                )
        logger.info("Alert %s created for anomaly %s (%s)", alert_id, anomaly.id, ", ".join(channels) or "no channels")
        return int(alert_id)


def _owner(conn: Connection, profile_id: str) -> str | None:
    return conn.execute(
        select(amazon_connections.c.user_id).where(amazon_connections.c.profile_id == profile_id)
    ).scalar()


def _rule_id(conn: Connection, user_id: str, profile_id: str) -> int | None:
    return conn.execute(
        select(automation_rules.c.id)
        .where(automation_rules.c.user_id == user_id, automation_rules.c.profile_id == profile_id)
        .order_by(automation_rules.c.id)
        .limit(1)
    ).scalar()


def _channels(conn: Connection, user_id: str) -> list[str]:
    prefs = conn.execute(
        select(user_prefs.c.email, user_prefs.c.slack_webhook).where(user_prefs.c.user_id == user_id)
    ).mappings().first()
    if prefs is None:
        return []
    channels = []
    if prefs["slack_webhook"]:
        channels.append("slack")
    if prefs["email"]:
        channels.append("email")
    return channels


def _alert_data(anomaly: Anomaly) -> dict[str, Any]:
    return {
        "anomaly_id": anomaly.id,
        "metric": anomaly.metric,
        "time_window": anomaly.time_window,
        "ts": anomaly.ts.isoformat(),
        "value": anomaly.value,
        "baseline": anomaly.baseline,
        "mad": anomaly.mad,
        "score": anomaly.score,
        "direction": anomaly.direction,
        "severity": anomaly.severity,
        "fingerprint": anomaly.fingerprint,
    }
