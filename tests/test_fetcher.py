from datetime import datetime, timezone

import pytest

from adsentry.ingest.amazon_client import AmazonApiError, ApiFailure, ApiSuccess
from adsentry.ingest.fetcher import PagedEntityFetcher


class FakeClient:
    profile_id = "111"

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def request(self, method, path, *, params=None, body=None):
        self.calls.append((path, dict(params or {})))
        return self.responses.pop(0)


def campaigns(start, count, updated=1_715_000_000_000):
    return [{"campaignId": str(i), "lastUpdatedTime": updated} for i in range(start, start + count)]


@pytest.mark.asyncio
async def test_stops_on_short_page():
    client = FakeClient([ApiSuccess(campaigns(0, 3), 200), ApiSuccess(campaigns(3, 1), 200)])
    fetcher = PagedEntityFetcher(client, "campaigns", page_size=3)
    pages = [page async for page in fetcher]
    assert [len(p.items) for p in pages] == [3, 1]
    assert fetcher.exhausted
    assert fetcher.pages_fetched == 2
    assert [params["startIndex"] for _, params in client.calls] == [0, 3]
    assert client.calls[0][1]["count"] == 3
    assert client.calls[0][1]["stateFilter"] == "enabled,paused,archived"


@pytest.mark.asyncio
async def test_fetch_n_pages_then_stop():
    client = FakeClient([ApiSuccess(campaigns(0, 2), 200), ApiSuccess(campaigns(2, 2), 200)])
    fetcher = PagedEntityFetcher(client, "campaigns", page_size=2)
    first = await fetcher.fetch_next()
    assert first.number == 1
    assert not fetcher.exhausted
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_targets_read_keywords_then_product_targets():
    client = FakeClient(
        [
            ApiSuccess([{"keywordId": 1}, {"keywordId": 2}], 200),
            ApiSuccess([{"keywordId": 3}], 200),
            ApiSuccess([{"targetId": 9}], 200),
        ]
    )
    pages = [page async for page in PagedEntityFetcher(client, "targets", page_size=2)]
    assert [p.path for p in pages] == ["/v2/sp/keywords", "/v2/sp/keywords", "/v2/sp/targets"]
    assert client.calls[2][1]["startIndex"] == 0


@pytest.mark.asyncio
async def test_since_filter_keeps_newer_and_undated_items():
    since = datetime(2024, 5, 1, tzinfo=timezone.utc)
    items = [
        {"campaignId": "old", "lastUpdatedTime": "2024-04-01T00:00:00Z"},
        {"campaignId": "new", "lastUpdatedTime": "2024-05-02T00:00:00Z"},
        {"campaignId": "undated"},
    ]
    client = FakeClient([ApiSuccess(items, 200)])
    pages = [page async for page in PagedEntityFetcher(client, "campaigns", since=since)]
    assert [item["campaignId"] for item in pages[0].items] == ["new", "undated"]
    assert pages[0].raw_count == 3


@pytest.mark.asyncio
async def test_page_failure_raises_and_exhausts():
    client = FakeClient([ApiFailure(error="Forbidden", status_code=403)])
    fetcher = PagedEntityFetcher(client, "campaigns")
    with pytest.raises(AmazonApiError) as excinfo:
        await fetcher.fetch_next()
    assert excinfo.value.status_code == 403
    assert fetcher.exhausted
    assert await fetcher.fetch_next() is None
