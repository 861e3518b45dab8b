"""Path execution engine.

Each path walks ``ARMED -> TRIGGERED -> WAITING -> QUERIED -> VALIDATED`` and
ends ``PASSED`` or ``FAILED``; any exception along the way ends it in
``ERROR`` without stopping the remaining paths.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any, Awaitable, Iterable, Optional, Protocol, TypeVar

import structlog

from .catalog import TriggerContext, resolve_trigger
from .config import Settings
from .errors import StepTimeoutError
from .fields import ABSENT, canonical, get_nested_value, missing_required_fields, validate_fields
from .log_store import TIMESTAMP_FIELD, LogRecord, LogStoreClient
from .models import CorrelationIds, ExpectedLog, RunState, RunSummary, TestPath, TestResult
from .polling import Clock, Sleeper
from .protocol import utc_now_iso

LOGGER = structlog.get_logger("path_coverage")

T = TypeVar("T")


class RunObserver(Protocol):
    def start_run(self, paths: list[TestPath]) -> None: ...

    def report_path_start(self, path: TestPath, conversation_id: str) -> None: ...

    def report_path_result(self, result: TestResult) -> None: ...

    def finish_run(self, summary: RunSummary) -> None: ...


def _matches(record: LogRecord, expected: ExpectedLog) -> bool:
    if get_nested_value(record, "event.action") != expected.event_action:
        return False
    if expected.logger and get_nested_value(record, "log.logger") != expected.logger.value:
        return False
    if expected.outcome and get_nested_value(record, "event.outcome") != expected.outcome.value:
        return False
    return True


def match_expected_logs(
    records: list[LogRecord],
    expected_logs: Iterable[ExpectedLog],
    ordered: bool = False,
) -> tuple[list[str], list[str]]:
    """Match each expectation against ``records``; returns ``(found, errors)``.

    The first record satisfying action, logger and outcome is taken. With
    ``ordered`` the matched records must also carry non-decreasing timestamps
    in the order the expectations are listed.
    """

    found: list[str] = []
    errors: list[str] = []
    matched: list[tuple[ExpectedLog, LogRecord]] = []

    for expected in expected_logs:
        record = next((r for r in records if _matches(r, expected)), None)
        if record is None:
            if not expected.optional:
                errors.append(f"Missing log: {expected.describe()}")
            continue

        found.append(expected.event_action)
        matched.append((expected, record))
        for field_path in missing_required_fields(record, expected.required_fields):
            errors.append(f"{expected.event_action}: missing required field '{field_path}'")
        expectations = {**expected.fields, **dict.fromkeys(expected.absent_fields, ABSENT)}
        for message in validate_fields(record, expectations):
            errors.append(f"{expected.event_action}: {message}")

    if ordered:
        for (before, first), (after, second) in zip(matched, matched[1:]):
            first_ts = get_nested_value(first, TIMESTAMP_FIELD)
            second_ts = get_nested_value(second, TIMESTAMP_FIELD)
            if first_ts and second_ts and str(second_ts) < str(first_ts):
                errors.append(
                    f"Out of order: {after.event_action} ({second_ts}) logged before "
                    f"{before.event_action} ({first_ts})"
                )

    return found, errors


class ScenarioRunner:
    """Runs catalog paths one after another against the live stack."""

    def __init__(
        self,
        settings: Settings,
        *,
        log_store: LogStoreClient,
        trigger_context: TriggerContext,
        observer: Optional[RunObserver] = None,
        sleep: Sleeper = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self.settings = settings
        self.log_store = log_store
        self.trigger_context = trigger_context
        self.observer = observer
        self._sleep = sleep
        self._clock = clock

    async def run_all(self, paths: list[TestPath], run_id: str | None = None) -> RunSummary:
        started_at = utc_now_iso()
        timer = time.perf_counter()
        if self.observer:
            self.observer.start_run(paths)

        results: list[TestResult] = []
        for path in paths:
            results.append(await self.run_path(path))

        summary = RunSummary(
            run_id=run_id or uuid.uuid4().hex[:12],
            started_at=started_at,
            finished_at=utc_now_iso(),
            duration_ms=round((time.perf_counter() - timer) * 1000, 3),
            results=results,
        )
        LOGGER.info("run_finished", total=summary.total, passed=summary.passed, failed=summary.failed)
        if self.observer:
            self.observer.finish_run(summary)
        return summary

    async def run_path(self, path: TestPath) -> TestResult:
        ids = CorrelationIds.generate()
        log = LOGGER.bind(path_id=path.id, conversation_id=ids.conversation_id)
        timer = time.perf_counter()
        state = RunState.ARMED
        triggered_at: str | None = None
        records: list[LogRecord] = []

        if self.observer:
            self.observer.report_path_start(path, ids.conversation_id)

        try:
            await self.trigger_context.provider.set_behavior(path.armed_behavior)
            log.info("path_armed", behavior=path.armed_behavior.value)

            trigger = resolve_trigger(path.trigger.name)
            triggered_at = utc_now_iso()
            state = RunState.TRIGGERED
            log.info("path_triggered", trigger=path.trigger.name, since=triggered_at)
            await self._bounded(
                "trigger",
                trigger(self.trigger_context, ids, **path.trigger.options),
                path,
            )

            state = RunState.WAITING
            log.info("path_waiting", wait_budget_ms=path.wait_budget_ms)
            await self._sleep(path.wait_budget_ms / 1000)

            state = RunState.QUERIED
            records = await self._bounded("query", self._collect_records(path, ids, triggered_at), path)
            log.info("path_queried", records=len(records))

            state = RunState.VALIDATED
            found, errors = match_expected_logs(records, path.expected_logs, ordered=path.ordered)
        except Exception as exc:
            log.error("path_errored", state=state.value, error=f"{type(exc).__name__}: {exc}")
            result = self._result(
                path,
                ids,
                state=RunState.ERROR,
                errors=[f"{type(exc).__name__}: {exc}"],
                found=[],
                timer=timer,
                triggered_at=triggered_at,
                records=records,
            )
        else:
            final = RunState.PASSED if not errors else RunState.FAILED
            log.info("path_validated", state=final.value, found=len(found), errors=len(errors))
            result = self._result(
                path,
                ids,
                state=final,
                errors=errors,
                found=found,
                timer=timer,
                triggered_at=triggered_at,
                records=records,
            )

        if self.observer:
            self.observer.report_path_result(result)
        return result

    async def _collect_records(self, path: TestPath, ids: CorrelationIds, since: str) -> list[LogRecord]:
        records = await self.log_store.wait_for_logs(
            ids.conversation_id,
            max_wait_ms=self.settings.poll_budget_ms,
            poll_interval_ms=self.settings.poll_interval_ms,
            clock=self._clock,
            sleep=self._sleep,
        )
        if records:
            return records

        LOGGER.info("correlation_lookup_empty", path_id=path.id, fallback="event_action", since=since)
        merged: list[LogRecord] = []
        seen: set[str] = set()
        actions = dict.fromkeys(expected.event_action for expected in path.expected_logs)
        for action in actions:
            for record in await self.log_store.query_by_event_action(action, since):
                key = canonical(record)
                if key not in seen:
                    seen.add(key)
                    merged.append(record)
        merged.sort(key=lambda record: str(get_nested_value(record, TIMESTAMP_FIELD) or ""))
        return merged

    @staticmethod
    async def _bounded(step: str, awaitable: Awaitable[T], path: TestPath) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=path.step_timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise StepTimeoutError(f"{step} step exceeded {path.step_timeout_ms}ms") from exc

    @staticmethod
    def _result(
        path: TestPath,
        ids: CorrelationIds,
        *,
        state: RunState,
        errors: list[str],
        found: list[str],
        timer: float,
        triggered_at: str | None,
        records: list[Any],
    ) -> TestResult:
        return TestResult(
            path=path.label,
            path_id=path.id,
            description=path.description,
            passed=state is RunState.PASSED,
            state=state,
            errors=errors,
            logs_found=found,
            duration_ms=round((time.perf_counter() - timer) * 1000, 3),
            conversation_id=ids.conversation_id,
            triggered_at=triggered_at,
            records_retrieved=len(records),
        )
