"""Output and log format selection for the importer CLI."""

import os
from enum import Enum
from typing import Literal, Mapping, Optional


class OutputFormat(str, Enum):
    """Summary output format."""
    AUTO = "auto"
    RICH = "rich"
    PLAIN = "plain"
    JSON = "json"


LogFormat = Literal["json", "console", "plain"]

ENV_VAR_NAME = "CONSOLE_OUTPUT_FORMAT"


def _environ(environ: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return os.environ if environ is None else environ


def get_output_format(
    cli_override: str | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> OutputFormat:
    """
    Get the output format with priority: CLI parameter > Environment variable > Default (auto).

    Unknown values are ignored and the next source is consulted.
    """
    if cli_override:
        try:
            return OutputFormat(cli_override.lower())
        except ValueError:
            pass

    env_value = _environ(environ).get(ENV_VAR_NAME)
    if env_value:
        try:
            return OutputFormat(env_value.lower())
        except ValueError:
            pass

    return OutputFormat.AUTO


def get_log_format(
    cli_override: str | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> LogFormat:
    """
    Get the log format with priority: CLI parameter > Environment variable > Default (console).

    Maps output format to log format:
    - auto/rich -> console (with colors)
    - plain -> plain (no colors, simple text)
    - json -> json
    """
    if cli_override:
        format_lower = cli_override.lower()
        if format_lower in ("json", "console", "plain"):
            return format_lower  # type: ignore

    env_value = _environ(environ).get(ENV_VAR_NAME)
    if env_value:
        format_lower = env_value.lower()
        if format_lower == "json":
            return "json"
        elif format_lower == "plain":
            return "plain"
        elif format_lower in ("auto", "rich"):
            return "console"

    return "console"
