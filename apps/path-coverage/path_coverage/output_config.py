"""Console output format: CLI flag, then ``CONSOLE_OUTPUT_FORMAT``, then terminal detection."""

import os
import sys
from enum import Enum
from typing import Mapping, Optional, TextIO


class OutputFormat(str, Enum):
    AUTO = "auto"
    RICH = "rich"
    PLAIN = "plain"
    JSON = "json"


ENV_VAR_NAME = "CONSOLE_OUTPUT_FORMAT"
CI_MARKERS = ("CI", "GITHUB_ACTIONS", "JENKINS_HOME", "GITLAB_CI", "TRAVIS")


def get_output_format(cli_override: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> OutputFormat:
    """Requested format; unrecognised values fall through to the next source."""

    env = os.environ if environ is None else environ
    for candidate in (cli_override, env.get(ENV_VAR_NAME)):
        if not candidate:
            continue
        try:
            return OutputFormat(candidate.strip().lower())
        except ValueError:
            continue
    return OutputFormat.AUTO


def resolve_output_format(
    requested: OutputFormat,
    stream: Optional[TextIO] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> OutputFormat:
    """Turn ``AUTO`` into ``RICH`` for an interactive terminal outside CI, ``PLAIN`` otherwise."""

    if requested is not OutputFormat.AUTO:
        return requested
    env = os.environ if environ is None else environ
    stream = stream or sys.stdout
    interactive = stream.isatty() and not any(marker in env for marker in CI_MARKERS)
    return OutputFormat.RICH if interactive else OutputFormat.PLAIN


def log_format_for(output_format: OutputFormat) -> str:
    """structlog renderer that sits well next to the given console format."""

    if output_format is OutputFormat.JSON:
        return "json"
    if output_format is OutputFormat.PLAIN:
        return "plain"
    return "console"
