"""Behavior modes and the mutable behavior table consulted on every redirect."""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MockProviderError(Exception):
    """Base error for the mock provider."""


class UnknownBehaviorError(MockProviderError):
    """Raised when a control request names a behavior mode that does not exist."""

    def __init__(self, mode: Any) -> None:
        self.mode = mode
        self.accepted = [item.value for item in BehaviorMode]
        super().__init__(f"Unknown behavior mode {mode!r}; accepted: {', '.join(self.accepted)}")


class InvalidDelayError(MockProviderError):
    """Raised when the requested response delay is not a non-negative number."""


class MissingParameterError(MockProviderError):
    """Raised when a redirect lacks the session identifier or the return address."""


class BehaviorMode(str, Enum):
    """Outcome the mock provider emulates when a user completes the EMREX flow."""

    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    NO_RECORDS = "no_records"
    CANCEL = "cancel"
    INVALID_GZIP = "invalid_gzip"
    INVALID_XML = "invalid_xml"
    IDENTITY_MISMATCH = "identity_mismatch"

    @classmethod
    def parse(cls, value: Any) -> "BehaviorMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise UnknownBehaviorError(value) from exc


class BehaviorConfig(BaseModel):
    """Mode plus artificial delay applied before the callback is sent."""

    model_config = ConfigDict(frozen=True)

    mode: BehaviorMode = BehaviorMode.SUCCESS
    delay_ms: int = Field(default=0, ge=0)

    def as_response(self) -> dict[str, Any]:
        return {"behavior": self.mode.value, "responseDelay": self.delay_ms}


class BehaviorTable:
    """Default behavior plus optional per-session overrides.

    The runner arms the default before each path; sessions that need their own
    outcome while sharing a provider instance register an override instead.
    """

    def __init__(self, default: BehaviorConfig | None = None) -> None:
        self._default = default or BehaviorConfig()
        self._sessions: dict[str, BehaviorConfig] = {}
        self._lock = threading.Lock()

    def set(
        self,
        mode: Any = None,
        delay_ms: Any = None,
        session_id: str | None = None,
    ) -> BehaviorConfig:
        parsed_mode = BehaviorMode.parse(mode) if mode not in (None, "") else None
        parsed_delay = _parse_delay(delay_ms)
        with self._lock:
            current = self._sessions.get(session_id, self._default) if session_id else self._default
            updated = BehaviorConfig(
                mode=parsed_mode or current.mode,
                delay_ms=current.delay_ms if parsed_delay is None else parsed_delay,
            )
            if session_id:
                self._sessions[session_id] = updated
            else:
                self._default = updated
            return updated

    def get(self, session_id: str | None = None) -> BehaviorConfig:
        with self._lock:
            if session_id and session_id in self._sessions:
                return self._sessions[session_id]
            return self._default

    def reset(self) -> BehaviorConfig:
        with self._lock:
            self._sessions.clear()
            self._default = BehaviorConfig()
            return self._default

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)


def _parse_delay(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidDelayError(f"Delay must be a number of milliseconds, got {value!r}")
    try:
        delay = int(float(value))
    except (TypeError, ValueError) as exc:
        raise InvalidDelayError(f"Delay must be a number of milliseconds, got {value!r}") from exc
    if delay < 0:
        raise InvalidDelayError(f"Delay must not be negative, got {delay}")
    return delay
