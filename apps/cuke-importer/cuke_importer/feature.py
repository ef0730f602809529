"""Feature import with a bounded pool of scenario importers."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from .client import ReportingClient
from .models import Feature, Status
from .scenario import ScenarioImporter
from .workers import run_all

LOGGER = structlog.get_logger("cuke_importer")


class FeatureImporter:
    """Starts a feature item, imports its scenarios in parallel, then finishes it."""

    def __init__(
        self,
        feature: Feature,
        client: ReportingClient,
        launch_id: str,
        *,
        scenario_threads: int = 1,
        temp_dir: Optional[Path] = None,
        default_time: Optional[datetime] = None,
    ) -> None:
        self.feature = feature
        self._default_time = default_time
        self._client = client
        self._launch_id = launch_id
        self._scenario_threads = scenario_threads
        self._temp_dir = temp_dir
        self._logger = LOGGER.bind(launch=launch_id, feature=feature.name)

    def run(self) -> bool:
        feature = self.feature
        self._logger.info("feature_import_started", scenarios=len(feature.scenarios))

        feature_id = self._client.start_item(
            launch_id=self._launch_id,
            parent_id=None,
            name=f"Feature: {feature.name}",
            start_time=feature.min_scenario_start or self._default_time,
            item_type="STORY",
            attributes=";".join(feature.tags),
            description=feature.description,
            code_ref=feature.code_ref,
        )

        tasks = []
        for scenario in feature.scenarios:
            importer = ScenarioImporter(
                scenario,
                self._client,
                self._launch_id,
                feature_id,
                feature_code_ref=feature.code_ref,
                temp_dir=self._temp_dir,
            )
            tasks.append((scenario.name, importer.run))
        outcomes = run_all(tasks, self._scenario_threads, self._logger, event="scenario_import_failed")

        passed = all(scenario.result == Status.PASSED for scenario in feature.scenarios)
        status = Status.PASSED.value if passed else Status.FAILED.value
        self._client.finish_item(
            launch_id=self._launch_id,
            item_id=feature_id,
            end_time=feature.max_scenario_end or self._default_time,
            status=status,
        )
        self._logger.info(
            "feature_import_finished",
            status=status,
            imported=sum(outcomes),
            failed=len(outcomes) - sum(outcomes),
        )
        return True
