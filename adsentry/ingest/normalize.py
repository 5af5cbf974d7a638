"""Mapping of remote Amazon Ads payloads onto local entity records.

The remote API is not consistent about field names across versions and
collections (``campaignId`` vs ``id``, ``lastUpdatedTime`` vs
``lastUpdatedDate``, flat ``dailyBudget`` vs nested ``budget.budget``). All
of that fallback resolution happens here; everything downstream works with
the typed records from :mod:`adsentry.ingest.models`.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from adsentry.ingest.models import (
    AdGroupRecord,
    AdRecord,
    CampaignRecord,
    EntityRecord,
    TargetRecord,
)
from adsentry.utils.dates import parse_timestamp


class MalformedRecordError(ValueError):
    pass


UPDATED_TIME_KEYS = ("lastUpdatedTime", "lastUpdatedDate", "lastUpdateDateTime", "last_updated_time")


def normalize(entity_type: str, payload: Mapping[str, Any]) -> EntityRecord:
    """Build the typed record for one remote item of ``entity_type``."""
    if not isinstance(payload, Mapping):
        raise MalformedRecordError(f"{entity_type}: expected an object, got {type(payload).__name__}")
    updated = updated_time(payload)
    if entity_type == "campaigns":
        budget = _pick(payload, "dailyBudget", "daily_budget")
        if budget is None and isinstance(payload.get("budget"), Mapping):
            budget = payload["budget"].get("budget")
        return CampaignRecord(
            campaign_id=_require_id(payload, entity_type, "campaignId", "id"),
            name=_pick(payload, "name"),
            campaign_type=_pick(payload, "campaignType", "campaign_type") or "sp",
            targeting_type=_lower(_pick(payload, "targetingType", "targeting_type")),
            state=_lower(_pick(payload, "state", "status")),
            serving_status=_pick(payload, "servingStatus", "serving_status"),
            daily_budget_micros=_micros(budget),
            bidding=dict(_pick(payload, "bidding", "dynamicBidding") or {}),
            start_date=_pick(payload, "startDate", "start_date"),
            end_date=_pick(payload, "endDate", "end_date"),
            last_updated_time=updated,
        )
    if entity_type == "ad_groups":
        return AdGroupRecord(
            ad_group_id=_require_id(payload, entity_type, "adGroupId", "id"),
            campaign_id=_str_or_none(_pick(payload, "campaignId", "campaign_id")),
            name=_pick(payload, "name"),
            state=_lower(_pick(payload, "state", "status")),
            serving_status=_pick(payload, "servingStatus", "serving_status"),
            default_bid_micros=_micros(_pick(payload, "defaultBid", "default_bid")),
            last_updated_time=updated,
        )
    if entity_type == "ads":
        creative = dict(_pick(payload, "creative") or {})
        for key in ("asin", "sku"):
            if payload.get(key) is not None:
                creative.setdefault(key, payload[key])
        return AdRecord(
            ad_id=_require_id(payload, entity_type, "adId", "id"),
            campaign_id=_str_or_none(_pick(payload, "campaignId", "campaign_id")),
            ad_group_id=_str_or_none(_pick(payload, "adGroupId", "ad_group_id")),
            state=_lower(_pick(payload, "state", "status")),
            serving_status=_pick(payload, "servingStatus", "serving_status"),
            creative=creative,
            last_updated_time=updated,
        )
    if entity_type == "targets":
        if _pick(payload, "keywordId") is not None:
            return TargetRecord(
                target_id=_require_id(payload, entity_type, "keywordId"),
                target_kind="keyword",
                campaign_id=_str_or_none(_pick(payload, "campaignId")),
                ad_group_id=_str_or_none(_pick(payload, "adGroupId")),
                expression={"text": _pick(payload, "keywordText")},
                match_type=_lower(_pick(payload, "matchType")),
                state=_lower(_pick(payload, "state")),
                bid_micros=_micros(_pick(payload, "bid")),
                last_updated_time=updated,
            )
        expression = _pick(payload, "expression", "resolvedExpression")
        if expression is None and payload.get("expressions"):
            expression = payload["expressions"][0]
        return TargetRecord(
            target_id=_require_id(payload, entity_type, "targetId", "id"),
            target_kind="product",
            campaign_id=_str_or_none(_pick(payload, "campaignId")),
            ad_group_id=_str_or_none(_pick(payload, "adGroupId")),
            expression=expression,
            match_type="product",
            state=_lower(_pick(payload, "state")),
            bid_micros=_micros(_pick(payload, "bid")),
            last_updated_time=updated,
        )
    raise ValueError(f"Unknown entity type: {entity_type}")


def updated_time(payload: Mapping[str, Any]) -> datetime | None:
    raw = _pick(payload, *UPDATED_TIME_KEYS)
    if raw is None and isinstance(payload.get("extendedData"), Mapping):
        raw = payload["extendedData"].get("lastUpdateDateTime")
    try:
        return parse_timestamp(raw)
    except (TypeError, ValueError, OverflowError) as exc:
        raise MalformedRecordError(f"Unparsable update time {raw!r}") from exc


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _require_id(payload: Mapping[str, Any], entity_type: str, *keys: str) -> str:
    value = _pick(payload, *keys)
    if value in (None, ""):
        raise MalformedRecordError(f"{entity_type}: record without {keys[0]}")
    return str(value)


def _str_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


def _lower(value: Any) -> str | None:
    return value.lower() if isinstance(value, str) else value


def _micros(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return round(float(value) * 1_000_000)
    except (TypeError, ValueError):
        return None
