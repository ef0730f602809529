"""Convert Cucumber JSON reports into a TestRun."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

import structlog

from .models import Embedding, Feature, Scenario, Status, Step, StepSection, TestRun
from .timeline import scenario_end

LOGGER = structlog.get_logger("cuke_importer")

STATUS_MAP = {
    "passed": Status.PASSED,
    "failed": Status.FAILED,
    "ambiguous": Status.FAILED,
    "skipped": Status.SKIPPED,
    "pending": Status.SKIPPED,
    "undefined": Status.SKIPPED,
}


class ReportFormatError(ValueError):
    """Raised when a report file is not a Cucumber JSON feature list."""


def load_report(path: Path) -> list[dict[str, Any]]:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise ReportFormatError(f"Failed to read report {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ReportFormatError(f"Report {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise ReportFormatError(f"Report {path} must contain a list of features")
    return payload


def convert_reports(paths: Iterable[Path], *, now: Optional[datetime] = None) -> TestRun:
    """Build one test run from every feature of every report, in order."""

    now = now or datetime.now(timezone.utc)
    features: list[Feature] = []
    for path in paths:
        raw_features = load_report(path)
        LOGGER.info("report_loaded", path=str(path), features=len(raw_features))
        for raw_feature in raw_features:
            if not isinstance(raw_feature, dict):
                raise ReportFormatError(f"Report {path} contains a feature that is not an object")
            features.append(_feature(raw_feature, now))

    scenarios = [scenario for feature in features for scenario in feature.scenarios]
    if not scenarios:
        return TestRun(start_time=now, end_time=now, features=features)
    return TestRun(
        start_time=min(scenario.start_timestamp for scenario in scenarios),
        end_time=max(scenario_end(scenario) for scenario in scenarios),
        features=features,
    )


def _feature(raw: dict[str, Any], now: datetime) -> Feature:
    scenarios: list[Scenario] = []
    background: Optional[dict[str, Any]] = None
    previous_end: Optional[datetime] = None
    for element in raw.get("elements") or []:
        if element.get("type") == "background":
            background = element
            continue
        scenario = _scenario(element, background, previous_end or now)
        background = None
        previous_end = scenario_end(scenario)
        scenarios.append(scenario)

    return Feature(
        name=raw.get("name", ""),
        description=_text(raw.get("description")),
        code_ref=raw.get("uri"),
        tags=_tags(raw.get("tags")),
        scenarios=scenarios,
    )


def _scenario(raw: dict[str, Any], background: Optional[dict[str, Any]], fallback_start: datetime) -> Scenario:
    before = [_step(hook, StepSection.BEFORE_SCENARIO) for hook in raw.get("before") or []]
    background_steps = []
    if background is not None:
        background_steps = [_step(step, StepSection.BACKGROUND) for step in background.get("steps") or []]
    body = [_step(step, StepSection.SCENARIO) for step in raw.get("steps") or []]
    after = [_step(hook, StepSection.AFTER_SCENARIO) for hook in raw.get("after") or []]

    everything = before + background_steps + body + after
    passed = all(_passed(step) for step in everything)

    timestamp = raw.get("start_timestamp")
    return Scenario(
        name=raw.get("name", ""),
        type=(raw.get("keyword") or "Scenario").strip(),
        description=_text(raw.get("description")),
        tags=_tags(raw.get("tags")),
        line=raw.get("line"),
        start_timestamp=_timestamp(timestamp) if timestamp else fallback_start,
        before_steps=before,
        background_steps=background_steps,
        scenario_steps=body,
        after_steps=after,
        result=Status.PASSED if passed else Status.FAILED,
    )


def _step(raw: dict[str, Any], section: StepSection) -> Step:
    result = raw.get("result") or {}
    match = raw.get("match") or {}
    doc_string = raw.get("doc_string") or {}
    embeddings = raw.get("embeddings") or raw.get("attachments") or []
    return Step(
        keyword=raw.get("keyword", ""),
        name=raw.get("name", ""),
        section=section,
        line=raw.get("line"),
        location=match.get("location"),
        duration=int(result.get("duration") or 0),
        result=_status(result.get("status")),
        table_data=_rows(raw.get("rows")),
        doc_string=doc_string.get("value"),
        error_message=result.get("error_message"),
        embeddings=[_embedding(item) for item in embeddings],
        before_steps=[_step(hook, StepSection.BEFORE_STEP) for hook in raw.get("before") or []],
        after_steps=[_step(hook, StepSection.AFTER_STEP) for hook in raw.get("after") or []],
    )


def _passed(step: Step) -> bool:
    hooks = step.before_steps + step.after_steps
    return step.result == Status.PASSED and all(hook.result == Status.PASSED for hook in hooks)


def _status(raw: Optional[str]) -> Status:
    if raw is None:
        return Status.SKIPPED
    status = STATUS_MAP.get(raw.lower())
    if status is None:
        LOGGER.warning("unknown_step_status", status=raw)
        return Status.FAILED
    return status


def _embedding(raw: dict[str, Any]) -> Embedding:
    return Embedding(
        data=raw.get("data", ""),
        mime_type=raw.get("mime_type") or raw.get("media_type") or "",
        name=raw.get("name"),
    )


def _rows(raw: Optional[list[dict[str, Any]]]) -> Optional[list[list[str]]]:
    if not raw:
        return None
    return [[str(cell) for cell in row.get("cells") or []] for row in raw]


def _tags(raw: Optional[list[dict[str, Any]]]) -> list[str]:
    return [tag["name"] for tag in raw or [] if tag.get("name")]


def _text(raw: Optional[str]) -> Optional[str]:
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def _timestamp(raw: str) -> datetime:
    try:
        moment = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ReportFormatError(f"Invalid start_timestamp: {raw!r}") from exc
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment
