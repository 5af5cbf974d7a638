"""Idempotent persistence of fetched entity pages."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.engine import Engine

from adsentry.db.tables import entity_ad_groups, entity_ads, entity_campaigns, entity_targets
from adsentry.db.upsert import upsert
from adsentry.ingest.models import EntityRecord
from adsentry.ingest.normalize import MalformedRecordError, normalize
from adsentry.utils.dates import utc_now

logger = logging.getLogger(__name__)

ENTITY_TABLES = {
    "campaigns": entity_campaigns,
    "ad_groups": entity_ad_groups,
    "ads": entity_ads,
    "targets": entity_targets,
}


@dataclass(slots=True)
class UpsertResult:
    upserted: int = 0
    skipped: int = 0
    warnings: list[str] = field(default_factory=list)
    high_watermark: datetime | None = None


class EntityUpserter:
    def __init__(self, engine: Engine, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.engine = engine
        self._clock = clock

    def upsert_page(
        self,
        profile_id: str,
        entity_type: str,
        items: Iterable[Mapping[str, Any]],
    ) -> UpsertResult:
        """Normalise and upsert one page keyed by (profile_id, entity id).

        Malformed items are skipped and reported in ``warnings``; the rest of
        the page is still written.
        """
        table = ENTITY_TABLES[entity_type]
        result = UpsertResult()
        records: dict[str, EntityRecord] = {}
        for index, item in enumerate(items):
            try:
                record = normalize(entity_type, item)
            except MalformedRecordError as exc:
                message = f"{entity_type}[{index}] skipped: {exc}"
                logger.warning("Profile %s: %s", profile_id, message)
                result.skipped += 1
                result.warnings.append(message)
                continue
            # A page may repeat an id; the later copy wins and is written once.
            records[record.entity_id] = record
            updated = record.last_updated_time
            if updated and (result.high_watermark is None or updated > result.high_watermark):
                result.high_watermark = updated

        if not records:
            return result
        synced_at = self._clock()
        rows = [record.to_row(profile_id, synced_at) for record in records.values()]
        id_column = next(iter(records.values())).id_column
        with self.engine.begin() as conn:
            result.upserted = upsert(conn, table, rows, conflict_columns=("profile_id", id_column))
        return result
