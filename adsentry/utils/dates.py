"""Datetime helpers."""

from __future__ import annotations

import os
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

import pendulum

DEFAULT_TZ = "UTC"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def utc_now() -> datetime:
    return pendulum.now("UTC")


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return an aware UTC datetime; naive values are assumed to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse epoch milliseconds or an ISO-8601 string into an aware UTC datetime."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value).strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)
    parsed = pendulum.parse(text)
    if not isinstance(parsed, datetime):
        raise ValueError(f"Not a timestamp: {value!r}")
    return ensure_utc(parsed)


def hour_bucket(value: datetime) -> datetime:
    value = ensure_utc(value)
    return value.replace(minute=0, second=0, microsecond=0)


def day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def same_hour_prior_weeks(value: datetime, weeks: int) -> list[datetime]:
    """Hour buckets at the same weekday and hour for each of the prior ``weeks`` weeks."""
    bucket = hour_bucket(value)
    return [bucket - timedelta(days=7 * i) for i in range(1, weeks + 1)]
