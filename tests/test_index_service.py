"""Tests for search indexing of action items."""

import asyncio
import json

import httpx

from tests._fakes import make_item
from triagebot.config import SearchConfig
from triagebot.services.index_service import IndexService


def _indexer(db, requests: list, status: int = 200, **config) -> IndexService:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status, json={"result": "updated"})

    search = SearchConfig(url="http://search:9200", **config)
    return IndexService(db, search, transport=httpx.MockTransport(handler))


class TestBuildDocument:
    """Test the indexed document."""

    async def test_document_contents(self, db, reconciler, repository):
        """Test action item and GitHub fields are both in the document."""
        upserted = await reconciler.upsert_item(
            repository,
            make_item("PR_5", 5, labels=["bug", "area/api"], participants=["octocat", "hubot"], comments=2),
        )
        service = IndexService(db, SearchConfig())

        document = await service.build_document(upserted.action_item_id)

        assert document["id"] == upserted.action_item_id
        assert document["status"] == "open"
        assert document["total_replies"] == 2
        assert document["type"] == "pull_request"
        assert document["repository"] == "octocat/hello"
        assert document["url"] == "https://github.com/octocat/hello/pull/5"
        assert document["author"] == "octocat"
        assert document["labels"] == ["area/api", "bug"]
        assert document["participants"] == ["hubot", "octocat"]

    async def test_unknown_item(self, db):
        """Test a missing action item has no document."""
        service = IndexService(db, SearchConfig())

        assert await service.build_document("missing") is None


class TestIndex:
    """Test requests sent to the search backend."""

    async def test_index_now_sends_update(self, db, reconciler, repository):
        """Test an _update request with the resolution increment is sent."""
        upserted = await reconciler.upsert_item(repository, make_item())
        requests: list[httpx.Request] = []
        service = _indexer(db, requests, api_key="secret")

        assert await service.index_now(upserted.action_item_id, times_resolved=1) is True
        await service.aclose()

        request = requests[0]
        assert request.url == f"http://search:9200/action-items/_update/{upserted.action_item_id}"
        assert request.headers["Authorization"] == "ApiKey secret"
        body = json.loads(request.content)
        assert body["script"]["params"]["times_resolved"] == 1
        assert body["script"]["params"]["doc"]["id"] == upserted.action_item_id
        assert body["upsert"]["times_resolved"] == 1

    async def test_index_now_logs_errors(self, db, reconciler, repository):
        """Test a backend error returns False instead of raising."""
        upserted = await reconciler.upsert_item(repository, make_item())
        requests: list[httpx.Request] = []
        service = _indexer(db, requests, status=503)

        assert await service.index_now(upserted.action_item_id) is False
        await service.aclose()
        assert len(requests) == 1

    async def test_index_schedules_in_background(self, db, reconciler, repository):
        """Test index() returns at once and aclose() waits for the request."""
        upserted = await reconciler.upsert_item(repository, make_item())
        requests: list[httpx.Request] = []
        service = _indexer(db, requests)

        service.index(upserted.action_item_id)
        await service.aclose()

        assert len(requests) == 1

    async def test_disabled_without_url(self, db, reconciler, repository):
        """Test index() does nothing when no search URL is configured."""
        upserted = await reconciler.upsert_item(repository, make_item())
        service = IndexService(db, SearchConfig())

        service.index(upserted.action_item_id)

        assert service._pending == set()

    async def test_in_flight_requests_are_bounded(self, db, reconciler, repository):
        """Test a burst of index() calls never exceeds max_concurrent_requests."""
        action_ids = [
            (await reconciler.upsert_item(repository, make_item(f"I_{n}", n))).action_item_id
            for n in range(8)
        ]
        in_flight = 0
        peak = 0
        seen: list[str] = []

        async def slow_handler(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            seen.append(request.url.path.rsplit("/", 1)[-1])
            return httpx.Response(200, json={"result": "updated"})

        search = SearchConfig(url="http://search:9200", max_concurrent_requests=2)
        service = IndexService(db, search, transport=httpx.MockTransport(slow_handler))

        for action_id in action_ids:
            service.index(action_id)
        await service.aclose()

        assert sorted(seen) == sorted(action_ids)
        assert peak <= 2
        assert service._client is None
