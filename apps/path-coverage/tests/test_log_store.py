from __future__ import annotations

import json

import httpx
import pytest

from path_coverage.errors import LogStoreError
from path_coverage.log_store import LogStoreClient


def _hits(*sources: dict) -> dict:
    return {"hits": {"total": {"value": len(sources)}, "hits": [{"_id": str(i), "_source": s} for i, s in enumerate(sources)]}}


class SearchRecorder:
    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    def bodies(self) -> list[dict]:
        return [json.loads(request.content) for request in self.requests]


def _store(handler) -> LogStoreClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LogStoreClient("http://es:9200/", index_pattern="oots-logs-*", client=client)


@pytest.mark.asyncio
async def test_query_by_correlation_id_builds_term_query() -> None:
    recorder = SearchRecorder(httpx.Response(200, json=_hits({"event": {"action": "a"}}, {"event": {"action": "b"}})))
    store = _store(recorder)

    records = await store.query_by_correlation_id("conv-1")

    assert [r["event"]["action"] for r in records] == ["a", "b"]
    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url.host == "es"
    assert request.url.path == "/oots-logs-*/_search"
    assert recorder.bodies()[0] == {
        "query": {"term": {"oots.conversation.id": "conv-1"}},
        "size": 100,
        "sort": [{"@timestamp": "asc"}],
    }


@pytest.mark.asyncio
async def test_query_by_event_action_limits_to_window() -> None:
    recorder = SearchRecorder(httpx.Response(200, json=_hits()))
    store = _store(recorder)

    assert await store.query_by_event_action("session_timeout", "2024-01-01T00:00:00.000Z", limit=5) == []

    body = recorder.bodies()[0]
    assert body["size"] == 5
    assert body["sort"] == [{"@timestamp": "desc"}]
    assert {"range": {"@timestamp": {"gte": "2024-01-01T00:00:00.000Z"}}} in body["query"]["bool"]["must"]
    assert {"term": {"event.action": "session_timeout"}} in body["query"]["bool"]["must"]


@pytest.mark.asyncio
async def test_missing_index_reads_as_empty() -> None:
    store = _store(SearchRecorder(httpx.Response(404, json={"error": "index_not_found_exception"})))

    assert await store.query_by_correlation_id("conv-1") == []


@pytest.mark.asyncio
async def test_server_error_raises_log_store_error() -> None:
    store = _store(SearchRecorder(httpx.Response(500, text="boom")))

    with pytest.raises(LogStoreError, match="HTTP 500"):
        await store.query_by_correlation_id("conv-1")


@pytest.mark.asyncio
async def test_transport_error_raises_log_store_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(LogStoreError):
        await _store(handler).count()


@pytest.mark.asyncio
async def test_latest_by_event_action_filters_logger() -> None:
    recorder = SearchRecorder(httpx.Response(200, json=_hits({"log": {"logger": "APP"}})))
    store = _store(recorder)

    record = await store.latest_by_event_action("message_processing_completed", logger="APP")

    assert record == {"log": {"logger": "APP"}}
    must = recorder.bodies()[0]["query"]["bool"]["must"]
    assert {"term": {"log.logger": "APP"}} in must


@pytest.mark.asyncio
async def test_count_and_health() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/_cluster/health":
            return httpx.Response(200, json={"status": "yellow"})
        return httpx.Response(200, json={"hits": {"total": {"value": 42}, "hits": []}})

    store = _store(handler)

    assert await store.count() == 42
    assert await store.health() == "yellow"


@pytest.mark.asyncio
async def test_health_is_none_when_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    assert await _store(handler).health() is None


@pytest.mark.asyncio
async def test_wait_for_logs_polls_until_records_arrive() -> None:
    recorder = SearchRecorder(
        httpx.Response(200, json=_hits()),
        httpx.Response(500, text="shard failure"),
        httpx.Response(200, json=_hits({"event": {"action": "evidence_request_received"}})),
    )
    store = _store(recorder)
    clock = {"now": 0.0}

    async def fake_sleep(seconds: float) -> None:
        clock["now"] += seconds

    records = await store.wait_for_logs(
        "conv-1",
        max_wait_ms=10000,
        poll_interval_ms=1000,
        clock=lambda: clock["now"],
        sleep=fake_sleep,
    )

    assert len(records) == 1
    assert len(recorder.requests) == 3
    assert clock["now"] == 2.0


@pytest.mark.asyncio
async def test_wait_for_logs_gives_up_with_empty_list() -> None:
    recorder = SearchRecorder(httpx.Response(200, json=_hits()))
    store = _store(recorder)
    clock = {"now": 0.0}

    async def fake_sleep(seconds: float) -> None:
        clock["now"] += seconds

    records = await store.wait_for_logs(
        "conv-1",
        max_wait_ms=3000,
        poll_interval_ms=2000,
        clock=lambda: clock["now"],
        sleep=fake_sleep,
    )

    assert records == []
    assert clock["now"] == 3.0
