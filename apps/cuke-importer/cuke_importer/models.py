"""Test-run models consumed by the importer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, Field, model_validator

from .timeline import as_utc, scenario_end

UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class Status(str, Enum):
    """Outcome recorded for a step or a scenario."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepSection(str, Enum):
    """Where a step was executed inside its scenario."""

    BEFORE_SCENARIO = "before_scenario"
    BACKGROUND = "background"
    SCENARIO = "scenario"
    AFTER_SCENARIO = "after_scenario"
    BEFORE_STEP = "before_step"
    AFTER_STEP = "after_step"


class LaunchMode(str, Enum):
    DEFAULT = "DEFAULT"
    DEBUG = "DEBUG"


class LaunchStatus(str, Enum):
    """Explicit statuses accepted when finishing a launch."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"
    SKIPPED = "SKIPPED"
    INTERRUPTED = "INTERRUPTED"
    CANCELLED = "CANCELLED"
    INFO = "INFO"
    WARN = "WARN"


class Embedding(BaseModel):
    """Base64 payload captured alongside a step."""

    data: str
    mime_type: str
    name: Optional[str] = None


class Step(BaseModel):
    """Single step, hook or step-hook of a scenario."""

    keyword: str = ""
    name: str = ""
    section: StepSection
    line: Optional[int] = None
    location: Optional[str] = None
    duration: int = 0
    result: Status = Status.PASSED
    table_data: Optional[list[list[str]]] = None
    doc_string: Optional[str] = None
    error_message: Optional[str] = None
    embeddings: list[Embedding] = Field(default_factory=list)
    before_steps: list[Step] = Field(default_factory=list)
    after_steps: list[Step] = Field(default_factory=list)

    @property
    def span(self) -> int:
        """Nanoseconds covered by the step and its step hooks."""

        return (
            sum(hook.duration for hook in self.before_steps)
            + self.duration
            + sum(hook.duration for hook in self.after_steps)
        )


def _section_duration(steps: list[Step]) -> int:
    return sum(step.span for step in steps)


class Scenario(BaseModel):
    """Scenario with its four ordered step sections.

    Section durations and the total duration may come from the source
    report. Missing values are derived from the step durations.
    """

    name: str
    type: str = "Scenario"
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    line: Optional[int] = None
    start_timestamp: UtcDatetime
    before_steps: list[Step] = Field(default_factory=list)
    background_steps: list[Step] = Field(default_factory=list)
    scenario_steps: list[Step] = Field(default_factory=list)
    after_steps: list[Step] = Field(default_factory=list)
    before_steps_duration: Optional[int] = None
    background_steps_duration: Optional[int] = None
    scenario_steps_duration: Optional[int] = None
    after_steps_duration: Optional[int] = None
    total_duration: Optional[int] = None
    result: Status = Status.PASSED

    @model_validator(mode="after")
    def _fill_durations(self) -> "Scenario":
        if self.before_steps_duration is None:
            self.before_steps_duration = _section_duration(self.before_steps)
        if self.background_steps_duration is None:
            self.background_steps_duration = _section_duration(self.background_steps)
        if self.scenario_steps_duration is None:
            self.scenario_steps_duration = _section_duration(self.scenario_steps)
        if self.after_steps_duration is None:
            self.after_steps_duration = _section_duration(self.after_steps)
        if self.total_duration is None:
            self.total_duration = (
                self.before_steps_duration
                + self.background_steps_duration
                + self.scenario_steps_duration
                + self.after_steps_duration
            )
        return self


class Feature(BaseModel):
    """Feature file with its scenarios."""

    name: str
    description: Optional[str] = None
    code_ref: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    scenarios: list[Scenario] = Field(default_factory=list)

    @property
    def min_scenario_start(self) -> Optional[datetime]:
        if not self.scenarios:
            return None
        return min(scenario.start_timestamp for scenario in self.scenarios)

    @property
    def max_scenario_end(self) -> Optional[datetime]:
        if not self.scenarios:
            return None
        return max(scenario_end(scenario) for scenario in self.scenarios)


class RunMetadata(BaseModel):
    """Launch-level metadata; ``id`` and ``link`` are set after import."""

    name: Optional[str] = None
    status: Optional[LaunchStatus] = None
    id: Optional[str] = None
    link: Optional[str] = None


class TestRun(BaseModel):
    """Whole execution converted from one or more report files."""

    __test__ = False  # not a pytest test class

    start_time: UtcDatetime
    end_time: UtcDatetime
    features: list[Feature] = Field(default_factory=list)
    metadata: RunMetadata = Field(default_factory=RunMetadata)
