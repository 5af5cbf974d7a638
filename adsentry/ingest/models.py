"""Ingestion data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Union


@dataclass(slots=True)
class Connection:
    profile_id: str
    user_id: str
    marketplace_id: str | None = None
    advertising_api_endpoint: str | None = None
    status: str = "active"


@dataclass(slots=True)
class _EntityRecord:
    entity_type: ClassVar[str]
    id_column: ClassVar[str]

    def to_row(self, profile_id: str, synced_at: datetime) -> dict[str, Any]:
        row = asdict(self)
        row["profile_id"] = profile_id
        row["synced_at"] = synced_at
        return row

    @property
    def entity_id(self) -> str:
        return getattr(self, self.id_column)


@dataclass(slots=True)
class CampaignRecord(_EntityRecord):
    entity_type: ClassVar[str] = "campaigns"
    id_column: ClassVar[str] = "campaign_id"

    campaign_id: str
    name: str | None = None
    campaign_type: str = "sp"
    targeting_type: str | None = None
    state: str | None = None
    serving_status: str | None = None
    daily_budget_micros: int | None = None
    bidding: dict[str, Any] = field(default_factory=dict)
    start_date: str | None = None
    end_date: str | None = None
    last_updated_time: datetime | None = None


@dataclass(slots=True)
class AdGroupRecord(_EntityRecord):
    entity_type: ClassVar[str] = "ad_groups"
    id_column: ClassVar[str] = "ad_group_id"

    ad_group_id: str
    campaign_id: str | None = None
    name: str | None = None
    state: str | None = None
    serving_status: str | None = None
    default_bid_micros: int | None = None
    last_updated_time: datetime | None = None


@dataclass(slots=True)
class AdRecord(_EntityRecord):
    entity_type: ClassVar[str] = "ads"
    id_column: ClassVar[str] = "ad_id"

    ad_id: str
    campaign_id: str | None = None
    ad_group_id: str | None = None
    state: str | None = None
    serving_status: str | None = None
    creative: dict[str, Any] = field(default_factory=dict)
    last_updated_time: datetime | None = None


@dataclass(slots=True)
class TargetRecord(_EntityRecord):
    entity_type: ClassVar[str] = "targets"
    id_column: ClassVar[str] = "target_id"

    target_id: str
    target_kind: str = "product"
    campaign_id: str | None = None
    ad_group_id: str | None = None
    expression: Any = None
    match_type: str | None = None
    state: str | None = None
    bid_micros: int | None = None
    last_updated_time: datetime | None = None


EntityRecord = Union[CampaignRecord, AdGroupRecord, AdRecord, TargetRecord]
