"""Page-by-page iteration over an Amazon Ads entity collection."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from adsentry.ingest.amazon_client import AmazonAdsClient, AmazonApiError
from adsentry.ingest.normalize import MalformedRecordError, updated_time

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
STATE_FILTER = "enabled,paused,archived"

# Targets are served by two collections; keywords are read first.
COLLECTIONS: dict[str, tuple[str, ...]] = {
    "campaigns": ("/v2/sp/campaigns",),
    "ad_groups": ("/v2/sp/adGroups",),
    "ads": ("/v2/sp/productAds",),
    "targets": ("/v2/sp/keywords", "/v2/sp/targets"),
}


@dataclass(slots=True)
class Page:
    entity_type: str
    path: str
    number: int
    start_index: int
    raw_count: int
    items: list[Mapping[str, Any]] = field(default_factory=list)


class PagedEntityFetcher:
    """Cursor over the pages of one entity type.

    ``fetch_next`` returns ``None`` once the fetcher is exhausted; it is also
    an async iterator for ``async for page in fetcher``. A failed page raises
    and leaves the fetcher exhausted, so a run cannot resume past it.
    """

    def __init__(
        self,
        client: AmazonAdsClient,
        entity_type: str,
        *,
        since: datetime | None = None,
        page_size: int = PAGE_SIZE,
    ) -> None:
        if entity_type not in COLLECTIONS:
            raise ValueError(f"Unknown entity type: {entity_type}")
        self.client = client
        self.entity_type = entity_type
        self.since = since
        self.page_size = page_size
        self.pages_fetched = 0
        self.exhausted = False
        self._paths = COLLECTIONS[entity_type]
        self._path_index = 0
        self._start_index = 0

    def __aiter__(self) -> PagedEntityFetcher:
        return self

    async def __anext__(self) -> Page:
        page = await self.fetch_next()
        if page is None:
            raise StopAsyncIteration
        return page

    async def fetch_next(self) -> Page | None:
        if self.exhausted:
            return None
        path = self._paths[self._path_index]
        params = {
            "startIndex": self._start_index,
            "count": self.page_size,
            "stateFilter": STATE_FILTER,
        }
        result = await self.client.request("GET", path, params=params)
        if not result.ok:
            self.exhausted = True
            raise result.to_exception()
        try:
            raw = _collection_items(result.data)
        except AmazonApiError:
            self.exhausted = True
            raise

        self.pages_fetched += 1
        page = Page(
            entity_type=self.entity_type,
            path=path,
            number=self.pages_fetched,
            start_index=self._start_index,
            raw_count=len(raw),
            items=[item for item in raw if self._updated_since(item)],
        )
        logger.info(
            "Fetched %s page %s (%s items, %s after since filter) from %s",
            self.entity_type, page.number, page.raw_count, len(page.items), path,
        )

        if len(raw) < self.page_size:
            self._path_index += 1
            self._start_index = 0
            if self._path_index >= len(self._paths):
                self.exhausted = True
        else:
            self._start_index += len(raw)
        return page

    def _updated_since(self, item: Any) -> bool:
        if self.since is None or not isinstance(item, Mapping):
            return True
        try:
            updated = updated_time(item)
        except MalformedRecordError:
            # Left for the upserter to reject with a warning.
            return True
        return updated is None or updated > self.since


def _collection_items(data: Any) -> list[Any]:
    if data is None:
        return []
    if isinstance(data, list):
        return data
    if isinstance(data, Mapping):
        for value in data.values():
            if isinstance(value, list):
                return value
    raise AmazonApiError(f"Unexpected collection payload of type {type(data).__name__}")
