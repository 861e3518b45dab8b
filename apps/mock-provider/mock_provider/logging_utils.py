"""Structured logging helpers shared by the mock provider and the path-coverage runner."""

from __future__ import annotations

import logging
import os
import sys
from io import StringIO
from typing import Any, Literal, Optional, TextIO

import structlog
from rich.console import Console
from rich.text import Text

LogFormat = Literal["console", "plain", "json"]

LOG_FORMAT_ENV = "CONSOLE_OUTPUT_FORMAT"

# console output formats map onto the renderer that suits them
_FORMAT_ALIASES: dict[str, LogFormat] = {
    "auto": "console",
    "rich": "console",
    "console": "console",
    "plain": "plain",
    "json": "json",
}


def resolve_log_format(cli_override: Optional[str] = None) -> LogFormat:
    """CLI flag first, then ``CONSOLE_OUTPUT_FORMAT``, then ``console``; unknown values are skipped."""

    for candidate in (cli_override, os.environ.get(LOG_FORMAT_ENV)):
        if candidate and candidate.strip().lower() in _FORMAT_ALIASES:
            return _FORMAT_ALIASES[candidate.strip().lower()]
    return "console"


class RichConsoleRenderer:
    """structlog renderer using Rich for colored console output."""

    def __init__(self) -> None:
        self.level_styles = {
            "debug": "dim cyan",
            "info": "cyan",
            "warning": "yellow",
            "error": "bold red",
            "critical": "bold white on red",
        }

    def __call__(self, logger: Any, name: str, event_dict: dict[str, Any]) -> str:
        timestamp = event_dict.pop("timestamp", "")
        level = event_dict.pop("level", "info")
        event = event_dict.pop("event", "")

        text = Text()
        text.append(timestamp, style="dim white")
        text.append(" ")
        text.append(f"[{level:<8}]", style=self.level_styles.get(level, "white"))
        text.append(" ")
        text.append(event, style="bold white")

        # align key-value pairs after the event name
        padding = max(0, 32 - len(event))
        if padding > 0 and event_dict:
            text.append(" " * padding)

        skipped = ("color_message", "stack", "exception")
        items = [(key, value) for key, value in sorted(event_dict.items()) if key not in skipped]
        for i, (key, value) in enumerate(items):
            text.append(f"{key}=", style="dim white")
            text.append(str(value), style="bright_cyan")
            if i < len(items) - 1:
                text.append(" ")

        exception = event_dict.get("exception")
        if exception:
            text.append("\n")
            text.append(str(exception), style="red")

        buffer = StringIO()
        Console(file=buffer, force_terminal=True, width=200, legacy_windows=False).print(text, end="")
        return buffer.getvalue()


def configure_logging(
    log_level: str,
    log_format: LogFormat = "console",
    logger_name: str = "mock_provider",
    stream: Optional[TextIO] = None,
) -> structlog.stdlib.BoundLogger:
    """Configure structlog for console, plain or JSON output and return a named logger.

    Log lines go to ``stream`` (stdout when omitted).
    """

    normalized_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=normalized_level,
        stream=stream or sys.stdout,
        format="%(message)s",
        force=True,
    )

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        structlog.processors.format_exc_info,
    ]

    if log_format == "console":
        processors.append(RichConsoleRenderer())
    elif log_format == "plain":
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:  # json
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(normalized_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger(logger_name)
