"""Scenario catalog: the YAML path table plus the trigger procedures it refers to."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable

import httpx
import structlog
import yaml
from pydantic import ValidationError

from .config import Settings
from .errors import CatalogError, TriggerError, UnknownTriggerError
from .models import CorrelationIds, TestPath
from .protocol import GatewayClient, ProviderClient, build_query_request, utc_now_iso

LOGGER = structlog.get_logger("path_coverage")

DEFAULT_CATALOG = Path(__file__).with_name("catalog.yaml")


@dataclass
class TriggerContext:
    """Collaborators handed to every trigger."""

    settings: Settings
    gateway: GatewayClient
    provider: ProviderClient
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep)


Trigger = Callable[..., Awaitable[None]]

TRIGGERS: dict[str, Trigger] = {}


def register_trigger(name: str) -> Callable[[Trigger], Trigger]:
    def decorator(func: Trigger) -> Trigger:
        TRIGGERS[name] = func
        return func

    return decorator


def resolve_trigger(name: str) -> Trigger:
    try:
        return TRIGGERS[name]
    except KeyError as exc:
        known = ", ".join(sorted(TRIGGERS)) or "none"
        raise UnknownTriggerError(f"Trigger '{name}' is not registered (known: {known})") from exc


@register_trigger("submit_request")
async def submit_request(
    context: TriggerContext,
    ids: CorrelationIds,
    *,
    possibility_for_preview: bool = True,
    with_preview_location: bool = False,
    variant: str = "valid",
    complete_provider_flow: bool = False,
    redirect_delay_ms: int = 8000,
    callback_timeout_s: float | None = None,
    expect_no_answer: bool = False,
) -> None:
    """Submit a QueryRequest through the red gateway and optionally finish the EMREX flow.

    The conversation id doubles as the bridge session id, so the preview
    location and the provider redirect both carry it.
    """

    session_id = ids.conversation_id
    preview_location = (
        f"{context.settings.bridge_store_url}?sessionId={session_id}" if with_preview_location else None
    )
    request = build_query_request(
        ids,
        utc_now_iso(),
        possibility_for_preview=possibility_for_preview,
        preview_location=preview_location,
        variant=variant,
    )
    if not await context.gateway.submit(ids, request):
        raise TriggerError(f"Gateway rejected the request for conversation {ids.conversation_id}")

    if not complete_provider_flow:
        return

    # give the bridge time to pick the message up and redirect the user
    await context.sleep(redirect_delay_ms / 1000)
    try:
        status = await context.provider.simulate_callback(
            session_id,
            context.settings.bridge_store_url,
            timeout=callback_timeout_s,
        )
    except httpx.TimeoutException:
        if not expect_no_answer:
            raise
        LOGGER.info("provider_flow_abandoned", session_id=session_id, timeout_s=callback_timeout_s)
        return
    if status >= 400:
        raise TriggerError(f"Mock provider answered HTTP {status} for session {session_id}")


def load_catalog(path: Path | None = None) -> list[TestPath]:
    """Load and validate the path table; ids must be unique and triggers registered."""

    source = path or DEFAULT_CATALOG
    try:
        data = yaml.safe_load(source.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise CatalogError(f"Catalog {source} could not be read: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("paths"), list):
        raise CatalogError(f"Catalog {source} must contain a 'paths' list")

    try:
        paths = [TestPath.model_validate(entry) for entry in data["paths"]]
    except ValidationError as exc:
        raise CatalogError(f"Catalog {source} is invalid: {exc}") from exc

    check_catalog(paths)
    return paths


def check_catalog(paths: list[TestPath]) -> None:
    seen: set[int] = set()
    duplicates: set[int] = set()
    for test_path in paths:
        if test_path.id in seen:
            duplicates.add(test_path.id)
        seen.add(test_path.id)
    if duplicates:
        raise CatalogError(f"Duplicate path id(s): {', '.join(str(d) for d in sorted(duplicates))}")
    for test_path in paths:
        resolve_trigger(test_path.trigger.name)


def select_paths(paths: list[TestPath], path_id: int | None) -> list[TestPath]:
    if path_id is None:
        return list(paths)
    return [p for p in paths if p.id == path_id]
