"""Scenario import."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import structlog

from .client import ReportingClient
from .models import Scenario
from .steps import StepImporter
from .timeline import section_start, to_nanos, to_datetime

LOGGER = structlog.get_logger("cuke_importer")


class ScenarioImporter:
    """Imports one scenario and its four step sections under a feature item."""

    def __init__(
        self,
        scenario: Scenario,
        client: ReportingClient,
        launch_id: str,
        feature_item_id: str,
        *,
        feature_code_ref: Optional[str] = None,
        temp_dir: Optional[Path] = None,
    ) -> None:
        self.scenario = scenario
        self._client = client
        self._launch_id = launch_id
        self._feature_item_id = feature_item_id
        self._feature_code_ref = feature_code_ref
        self._steps = StepImporter(client, launch_id, code_ref=feature_code_ref, temp_dir=temp_dir)
        self._logger = LOGGER.bind(launch=launch_id, scenario=scenario.name)

    def run(self) -> bool:
        scenario = self.scenario
        self._logger.info("scenario_import_started")

        scenario_id = self._client.start_item(
            launch_id=self._launch_id,
            parent_id=self._feature_item_id,
            name=f"{scenario.type}: {scenario.name}",
            start_time=scenario.start_timestamp,
            item_type="STEP",
            attributes=";".join(scenario.tags),
            description=scenario.description,
            code_ref=self._code_ref(),
        )

        # Sections run strictly in this order; each starts where the prior durations end.
        sections = [
            (scenario.before_steps, []),
            (scenario.background_steps, [scenario.before_steps_duration]),
            (
                scenario.scenario_steps,
                [scenario.before_steps_duration, scenario.background_steps_duration],
            ),
            (
                scenario.after_steps,
                [
                    scenario.before_steps_duration,
                    scenario.background_steps_duration,
                    scenario.scenario_steps_duration,
                ],
            ),
        ]
        clock = to_nanos(scenario.start_timestamp)
        for steps, prior_durations in sections:
            expected = section_start(scenario.start_timestamp, prior_durations)
            if steps and clock != expected:
                self._logger.warning("section_start_mismatch", expected=expected, walked=clock)
            clock = self._steps.write_section(steps, expected, scenario_id).clock

        end = to_nanos(scenario.start_timestamp) + scenario.total_duration
        if clock != end:
            self._logger.warning(
                "scenario_duration_mismatch",
                recorded_total=scenario.total_duration,
                walked_total=clock - to_nanos(scenario.start_timestamp),
            )

        self._client.finish_item(
            launch_id=self._launch_id,
            item_id=scenario_id,
            end_time=to_datetime(end),
            status=scenario.result.value,
        )
        self._logger.info("scenario_import_finished", status=scenario.result.value)
        return True

    def _code_ref(self) -> Optional[str]:
        if self._feature_code_ref is None:
            return None
        if self.scenario.line is None:
            return self._feature_code_ref
        return f"{self._feature_code_ref}:{self.scenario.line}"
