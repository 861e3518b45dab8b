"""Catalog entries, per-run identifiers and results."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field

from mock_provider.behavior import BehaviorMode


class LoggerName(str, Enum):
    """``log.logger`` values emitted by the bridge."""

    APP = "APP"
    EXT = "EXT"
    OOTS = "OOTS"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class RunState(str, Enum):
    """Lifecycle of one path execution."""

    ARMED = "armed"
    TRIGGERED = "triggered"
    WAITING = "waiting"
    QUERIED = "queried"
    VALIDATED = "validated"
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"


class ExpectedLog(BaseModel):
    """A record that must (or, when ``optional``, may) appear for a path."""

    model_config = ConfigDict(frozen=True)

    event_action: str
    logger: Optional[LoggerName] = None
    outcome: Optional[Outcome] = None
    required_fields: list[str] = Field(default_factory=list)
    fields: dict[str, Any] = Field(default_factory=dict)
    absent_fields: list[str] = Field(default_factory=list)
    optional: bool = False

    def describe(self) -> str:
        logger = self.logger.value if self.logger else "any"
        outcome = self.outcome.value if self.outcome else "any"
        return f"{self.event_action} (logger: {logger}, outcome: {outcome})"


class TriggerSpec(BaseModel):
    """Registered trigger procedure plus the options it is called with."""

    model_config = ConfigDict(frozen=True)

    name: str
    options: dict[str, Any] = Field(default_factory=dict)


class TestPath(BaseModel):
    """One end-to-end route through the bridge and the log trail it must leave."""

    __test__: ClassVar[bool] = False

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str = ""
    behavior_mode: Optional[BehaviorMode] = None
    trigger: TriggerSpec
    expected_logs: list[ExpectedLog] = Field(default_factory=list)
    wait_budget_ms: int = Field(default=15000, ge=0)
    step_timeout_ms: int = Field(default=30000, gt=0)
    ordered: bool = False

    @property
    def label(self) -> str:
        return f"Path {self.id}: {self.name}"

    @property
    def armed_behavior(self) -> BehaviorMode:
        return self.behavior_mode or BehaviorMode.SUCCESS


@dataclass(frozen=True)
class CorrelationIds:
    """Identifiers stamped into one run's request; ``conversation_id`` joins the log trail."""

    query_id: str
    message_id: str
    conversation_id: str

    @classmethod
    def generate(cls) -> "CorrelationIds":
        return cls(
            query_id=f"urn:uuid:{uuid.uuid4()}",
            message_id=f"{uuid.uuid4()}@domibus.eu",
            conversation_id=str(uuid.uuid4()),
        )


class TestResult(BaseModel):
    """Outcome of running one path."""

    __test__: ClassVar[bool] = False

    model_config = ConfigDict(frozen=True)

    path: str
    path_id: int
    description: str = ""
    passed: bool
    state: RunState
    errors: list[str] = Field(default_factory=list)
    logs_found: list[str] = Field(default_factory=list)
    duration_ms: float
    conversation_id: Optional[str] = None
    triggered_at: Optional[str] = None
    records_retrieved: int = 0


class RunSummary(BaseModel):
    """Aggregate over every path executed in one invocation."""

    run_id: str
    started_at: str
    finished_at: str
    duration_ms: float
    results: list[TestResult] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for result in self.results if result.passed)

    @property
    def failed(self) -> int:
        return self.total - self.passed

    @property
    def all_passed(self) -> bool:
        return self.failed == 0
