"""Importer settings: YAML file, then environment, then explicit overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError

from .models import LaunchMode

LOGGER = structlog.get_logger("cuke_importer")

LIST_SEPARATOR = ";"

# Environment variable -> (settings path, is list)
ENV_VARS: dict[str, tuple[tuple[str, ...], bool]] = {
    "RP_IMPORTER_CUCUMBER_JSON_FILES": (("cucumber_json_files",), True),
    "RP_IMPORTER_LAUNCH_NAME": (("launch", "name"), False),
    "RP_IMPORTER_LAUNCH_ATTRIBUTES": (("launch", "attributes"), False),
    "RP_IMPORTER_LAUNCH_ATTACHMENTS": (("launch", "attachments"), True),
    "RP_IMPORTER_LAUNCH_DESCRIPTION": (("launch", "description"), False),
    "RP_IMPORTER_LAUNCH_RERUN_OF": (("launch", "rerun_of"), False),
    "RP_IMPORTER_LAUNCH_MODE": (("launch", "mode"), False),
    "RP_IMPORTER_THREADS_FEATURES": (("threads", "features"), False),
    "RP_IMPORTER_THREADS_SCENARIOS": (("threads", "scenarios"), False),
    "RP_IMPORTER_REPORTPORTAL_PROJECT_NAME": (("portal", "project_name"), False),
    "RP_IMPORTER_REPORTPORTAL_API_KEY": (("portal", "api_key"), False),
    "RP_IMPORTER_REPORTPORTAL_ENDPOINT": (("portal", "endpoint"), False),
    "RP_IMPORTER_ATTRIBUTES_RERUN_ENABLED": (("attributes", "rerun", "enabled"), False),
    "RP_IMPORTER_ATTRIBUTES_RERUN_NAME": (("attributes", "rerun", "name"), False),
}


class ConfigError(ValueError):
    """Raised when the importer configuration cannot be loaded."""


class LaunchSettings(BaseModel):
    name: str = ""
    description: str = ""
    attributes: str = ""
    attachments: list[str] = Field(default_factory=list)
    rerun_of: str = ""
    mode: LaunchMode = LaunchMode.DEBUG


class ThreadSettings(BaseModel):
    features: int = Field(default=1, ge=1)
    scenarios: int = Field(default=1, ge=1)


class PortalSettings(BaseModel):
    endpoint: str = ""
    project_name: str = ""
    api_key: str = ""


class RerunAttributeSettings(BaseModel):
    enabled: bool = False
    name: str = "rerun"


class AttributeSettings(BaseModel):
    rerun: RerunAttributeSettings = Field(default_factory=RerunAttributeSettings)


class ImporterSettings(BaseModel):
    """Everything an import run needs besides the reports themselves."""

    cucumber_json_files: list[str] = Field(default_factory=list)
    launch: LaunchSettings = Field(default_factory=LaunchSettings)
    threads: ThreadSettings = Field(default_factory=ThreadSettings)
    portal: PortalSettings = Field(default_factory=PortalSettings)
    attributes: AttributeSettings = Field(default_factory=AttributeSettings)
    base_dir: Path = Field(default_factory=Path.cwd)


def load_settings(
    path: Optional[Path] = None,
    *,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ImporterSettings:
    """Load settings with priority: overrides > environment > file > defaults."""

    data: dict[str, Any] = {}
    if path is not None:
        data = _read_file(path)
        data.setdefault("base_dir", str(path.resolve().parent))

    env = os.environ if environ is None else environ
    for var_name, (key_path, is_list) in ENV_VARS.items():
        raw = env.get(var_name)
        if raw is None:
            continue
        value: Any = _split(raw) if is_list else raw
        _merge(data, _nested(key_path, value))

    if overrides:
        _merge(data, dict(overrides))

    try:
        return ImporterSettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid importer configuration: {exc}") from exc


def _read_file(path: Path) -> dict[str, Any]:
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read configuration file {path}: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    return payload


def _split(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(LIST_SEPARATOR) if item.strip()]


def _nested(key_path: tuple[str, ...], value: Any) -> dict[str, Any]:
    result: Any = value
    for key in reversed(key_path):
        result = {key: result}
    return result


def _merge(target: dict[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        elif isinstance(value, Mapping):
            target[key] = {}
            _merge(target[key], value)
        else:
            target[key] = value


def enhance_attributes_with_rerun(attributes: str, settings: ImporterSettings) -> str:
    """Append the value-only rerun attribute when importing a rerun."""

    rerun = settings.attributes.rerun
    if not settings.launch.rerun_of.strip() or not rerun.enabled:
        return attributes
    rerun_attribute = f":{rerun.name}"
    if not attributes.strip():
        return rerun_attribute
    return f"{attributes}{LIST_SEPARATOR}{rerun_attribute}"


def resolve_file(raw: str, base_dir: Path) -> Optional[Path]:
    """Return an existing file for ``raw`` or ``None`` (logged) when missing."""

    candidate = Path(raw.strip()).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    if candidate.is_file():
        return candidate
    LOGGER.error("file_not_found", path=str(candidate))
    return None
