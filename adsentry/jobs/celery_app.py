"""Celery configuration for scheduled jobs."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from adsentry.utils.dates import timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery("adsentry", broker=broker_url, backend=backend_url, include=["adsentry.jobs.celery_app"])
celery_app.conf.timezone = timezone_name()
celery_app.conf.beat_schedule = {
    "incremental-sync": {
        "task": "adsentry.jobs.sync.run_scheduled_sync",
        "schedule": crontab(minute=int(os.environ.get("SYNC_MINUTE", "5"))),
        "kwargs": {"mode": "incremental"},
    },
    "nightly-full-sync": {
        "task": "adsentry.jobs.sync.run_scheduled_sync",
        "schedule": crontab(hour=int(os.environ.get("FULL_SYNC_HOUR", "2")), minute=30),
        "kwargs": {"mode": "full"},
    },
    "intraday-anomalies": {
        "task": "adsentry.jobs.anomalies.run_anomaly_detection",
        "schedule": crontab(minute=int(os.environ.get("INTRADAY_DETECTION_MINUTE", "20"))),
        "kwargs": {"scope": "campaign", "window": "intraday"},
    },
    "daily-anomalies": {
        "task": "adsentry.jobs.anomalies.run_anomaly_detection",
        "schedule": crontab(hour=int(os.environ.get("DAILY_DETECTION_HOUR", "6")), minute=0),
        "kwargs": {"scope": "campaign", "window": "daily"},
    },
}


@celery_app.task(name="adsentry.jobs.sync.run_scheduled_sync")
def run_scheduled_sync_task(mode: str = "incremental"):  # pragma: no cover - executed by worker
    import asyncio
    import logging

    from adsentry.jobs.sync import run_scheduled_sync

    logging.basicConfig(level=logging.INFO)
    return asyncio.run(run_scheduled_sync(mode))


@celery_app.task(name="adsentry.jobs.anomalies.run_anomaly_detection")
def run_anomaly_detection_task(scope: str = "campaign", window: str = "intraday"):  # pragma: no cover - executed by worker
    import asyncio
    import logging

    from adsentry.jobs.anomalies import run_anomaly_detection

    logging.basicConfig(level=logging.INFO)
    return asyncio.run(run_anomaly_detection(None, scope, window))
