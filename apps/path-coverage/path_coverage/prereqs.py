"""Reachability checks for the services a path run depends on."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog

from .config import Settings
from .errors import TriggerError
from .log_store import LogStoreClient
from .protocol import ProviderClient

LOGGER = structlog.get_logger("path_coverage")


@dataclass(frozen=True)
class PrerequisiteCheck:
    name: str
    ok: bool
    required: bool = True
    detail: str = ""


async def _probe(
    client: httpx.AsyncClient,
    name: str,
    url: str,
    *,
    required: bool = True,
) -> PrerequisiteCheck:
    """Any HTTP answer counts as reachable."""

    try:
        response = await client.get(url)
    except httpx.HTTPError as exc:
        return PrerequisiteCheck(name, False, required, f"not reachable ({type(exc).__name__})")
    return PrerequisiteCheck(name, True, required, f"HTTP {response.status_code}")


async def _log_store_check(settings: Settings, client: httpx.AsyncClient) -> PrerequisiteCheck:
    store = LogStoreClient(settings.es_url, index_pattern=settings.es_index_pattern, client=client)
    status = await store.health()
    if status is None:
        return PrerequisiteCheck("Elasticsearch", False, detail="cluster health unavailable")
    return PrerequisiteCheck("Elasticsearch", True, detail=f"cluster {status}")


async def _provider_check(settings: Settings, client: httpx.AsyncClient) -> PrerequisiteCheck:
    try:
        health = await ProviderClient(settings.mock_emrex_url, client).health()
    except TriggerError as exc:
        return PrerequisiteCheck("Mock EMREX Provider", False, detail=str(exc))
    return PrerequisiteCheck("Mock EMREX Provider", True, detail=f"behavior={health.get('behavior', '?')}")


async def check_prerequisites(settings: Settings, client: httpx.AsyncClient) -> list[PrerequisiteCheck]:
    """Probe the log store, both gateways, the mock provider and the bridge.

    The bridge check is informational only: its health route is not guaranteed
    to exist.
    """

    checks = [
        await _log_store_check(settings, client),
        await _probe(client, "Red Gateway", f"{settings.red_gateway_url.rstrip('/')}/domibus"),
        await _probe(client, "Blue Gateway", f"{settings.blue_gateway_url.rstrip('/')}/domibus"),
        await _provider_check(settings, client),
        await _probe(client, "Bridge", f"{settings.bridge_url.rstrip('/')}/health", required=False),
    ]
    for check in checks:
        LOGGER.debug("prerequisite_checked", name=check.name, ok=check.ok, detail=check.detail)
    return checks


def prerequisites_met(checks: list[PrerequisiteCheck]) -> bool:
    return all(check.ok for check in checks if check.required)
