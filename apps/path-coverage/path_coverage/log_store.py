"""Query layer over the Elasticsearch index holding the bridge's structured logs.

All lookups go through the single ``/<index-pattern>/_search`` endpoint::

    async with LogStoreClient("http://localhost:9200") as store:
        records = await store.wait_for_logs(conversation_id, max_wait_ms=5000)
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import structlog

from .errors import LogStoreError
from .polling import Clock, RetryPolicy, Sleeper, poll_until

LOGGER = structlog.get_logger("path_coverage")

LogRecord = dict[str, Any]

CORRELATION_FIELD = "oots.conversation.id"
TIMESTAMP_FIELD = "@timestamp"
DEFAULT_INDEX_PATTERN = "oots-logs-*"


class LogStoreClient:
    """Read-only access to persisted log records."""

    def __init__(
        self,
        base_url: str,
        *,
        index_pattern: str = DEFAULT_INDEX_PATTERN,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._index_pattern = index_pattern
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def __aenter__(self) -> "LogStoreClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def search(self, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}/{self._index_pattern}/_search"
        try:
            response = await self._client.post(url, json=body)
        except httpx.HTTPError as exc:
            raise LogStoreError(f"Search request to {url} failed: {type(exc).__name__}: {exc}") from exc
        if response.status_code == 404:
            # index pattern matches nothing yet
            return {"hits": {"total": {"value": 0}, "hits": []}}
        if not response.is_success:
            raise LogStoreError(f"Search request to {url} returned HTTP {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as exc:
            raise LogStoreError(f"Search response from {url} is not JSON: {response.text[:200]}") from exc

    async def query_by_correlation_id(
        self,
        correlation_id: str,
        size: int = 100,
        ascending: bool = True,
    ) -> list[LogRecord]:
        """Every record sharing ``correlation_id``; empty when none is indexed yet."""

        body = {
            "query": {"term": {CORRELATION_FIELD: correlation_id}},
            "size": size,
            "sort": [{TIMESTAMP_FIELD: "asc" if ascending else "desc"}],
        }
        return _sources(await self.search(body))

    async def query_by_event_action(self, action: str, since: str, limit: int = 10) -> list[LogRecord]:
        """Newest records for ``action`` at or after the ISO timestamp ``since``."""

        body = {
            "query": {
                "bool": {
                    "must": [
                        {"term": {"event.action": action}},
                        {"range": {TIMESTAMP_FIELD: {"gte": since}}},
                    ]
                }
            },
            "size": limit,
            "sort": [{TIMESTAMP_FIELD: "desc"}],
        }
        return _sources(await self.search(body))

    async def latest_by_event_action(self, action: str, logger: str | None = None) -> LogRecord | None:
        must: list[dict[str, Any]] = [{"term": {"event.action": action}}]
        if logger:
            must.append({"term": {"log.logger": logger}})
        body = {
            "query": {"bool": {"must": must}},
            "size": 1,
            "sort": [{TIMESTAMP_FIELD: "desc"}],
        }
        records = _sources(await self.search(body))
        return records[0] if records else None

    async def count(self) -> int:
        payload = await self.search({"query": {"match_all": {}}, "size": 0})
        total = (payload.get("hits") or {}).get("total") or 0
        if isinstance(total, dict):
            return int(total.get("value", 0))
        return int(total)

    async def health(self) -> str | None:
        """Cluster status (``green``/``yellow``/``red``) or ``None`` when unreachable."""

        try:
            response = await self._client.get(f"{self._base_url}/_cluster/health")
        except httpx.HTTPError as exc:
            LOGGER.warning("log_store_unreachable", url=self._base_url, error=str(exc))
            return None
        if response.status_code != 200:
            return None
        try:
            return response.json().get("status")
        except ValueError:
            return None

    async def wait_for_logs(
        self,
        correlation_id: str,
        max_wait_ms: int = 10000,
        poll_interval_ms: int = 2000,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> list[LogRecord]:
        """Poll by correlation id until records show up or ``max_wait_ms`` elapses.

        Best effort: an exhausted budget yields an empty list, not an error.
        """

        policy = RetryPolicy(budget_ms=max_wait_ms, interval_ms=poll_interval_ms)
        records = await poll_until(
            lambda: self.query_by_correlation_id(correlation_id),
            bool,
            policy,
            [],
            clock=clock,
            sleep=sleep,
        )
        LOGGER.debug("logs_polled", correlation_id=correlation_id, records=len(records))
        return records


def _sources(payload: dict[str, Any]) -> list[LogRecord]:
    hits = (payload.get("hits") or {}).get("hits") or []
    return [hit["_source"] for hit in hits if isinstance(hit, dict) and isinstance(hit.get("_source"), dict)]
