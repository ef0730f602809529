"""Launch-level import: start, attachments, parallel features, finish."""

from __future__ import annotations

import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, ContextManager, Optional

import structlog

from .client import FinishLaunchResponse, PortalClient, PortalClientError, ReportingClient
from .config import ImporterSettings, enhance_attributes_with_rerun, resolve_file
from .converter import convert_reports
from .feature import FeatureImporter
from .models import RunMetadata, TestRun
from .workers import run_all

LOGGER = structlog.get_logger("cuke_importer")

FINISH_LAUNCH_ATTEMPTS = 2
FINISH_LAUNCH_BACKOFF_SECONDS = 1.0

ClientFactory = Callable[[ImporterSettings], ContextManager[ReportingClient]]


class LaunchImporter:
    """Imports whole test runs as launches.

    ``client_factory`` opens one client per import; the client is shared by
    every feature and scenario worker of that import.
    """

    def __init__(
        self,
        settings: ImporterSettings,
        *,
        client_factory: ClientFactory = PortalClient.from_settings,
        sleep: Callable[[float], None] = time.sleep,
        temp_dir: Optional[Path] = None,
    ) -> None:
        self.settings = settings
        self._client_factory = client_factory
        self._sleep = sleep
        self._temp_dir = temp_dir

    def import_cucumber_reports(self, metadata: Optional[RunMetadata] = None) -> Optional[TestRun]:
        """Convert the configured report files and import them."""

        test_run = self._convert_configured_reports()
        if metadata is not None:
            test_run = test_run.model_copy(update={"metadata": metadata.model_copy()})
        return self.import_report(test_run)

    def import_as_rerun_of(
        self,
        previous_run: TestRun,
        test_run: Optional[TestRun] = None,
    ) -> Optional[TestRun]:
        """Import ``test_run`` so that its launch spans the previous run too."""

        if test_run is None:
            test_run = self._convert_configured_reports()
        rerun = test_run.model_copy(
            update={
                "start_time": previous_run.start_time,
                "end_time": max(previous_run.end_time, test_run.end_time),
                "metadata": previous_run.metadata.model_copy(),
            }
        )
        return self.import_report(rerun)

    def import_report(self, test_run: TestRun) -> Optional[TestRun]:
        if not test_run.features:
            LOGGER.warning("launch_import_skipped", reason="test run has no features")
            return None

        launch = self.settings.launch
        with self._client_factory(self.settings) as client:
            launch_id = client.start_launch(
                name=launch.name,
                description=launch.description or None,
                start_time=test_run.start_time,
                attributes=enhance_attributes_with_rerun(launch.attributes, self.settings),
                rerun_of=launch.rerun_of or None,
                mode=launch.mode.value,
            )
            logger = LOGGER.bind(launch=launch_id)
            logger.info("launch_started", name=launch.name, features=len(test_run.features))

            self._upload_attachments(client, launch_id, test_run.start_time, logger)

            tasks = []
            for feature in test_run.features:
                importer = FeatureImporter(
                    feature,
                    client,
                    launch_id,
                    scenario_threads=self.settings.threads.scenarios,
                    temp_dir=self._temp_dir,
                    default_time=test_run.start_time,
                )
                tasks.append((feature.name, importer.run))
            outcomes = run_all(tasks, self.settings.threads.features, logger, event="feature_import_failed")

            status = test_run.metadata.status.value if test_run.metadata.status else None
            response = self._finish_launch(client, launch_id, test_run.end_time, status, logger)

        logger.info(
            "launch_finished",
            link=response.link,
            imported=sum(outcomes),
            failed=len(outcomes) - sum(outcomes),
        )
        metadata = test_run.metadata.model_copy(update={"id": launch_id, "link": response.link})
        return test_run.model_copy(update={"metadata": metadata})

    def _upload_attachments(
        self,
        client: ReportingClient,
        launch_id: str,
        start_time: datetime,
        logger: Any,
    ) -> None:
        for raw in self.settings.launch.attachments:
            path = resolve_file(raw, self.settings.base_dir)
            if path is None:
                logger.warning("launch_attachment_skipped", path=raw)
                continue
            client.add_file_attachment(
                launch_id=launch_id,
                item_id=None,
                level="INFO",
                time=start_time,
                message=path.name,
                file_path=path,
            )
            logger.info("launch_attachment_uploaded", path=str(path))

    def _finish_launch(
        self,
        client: ReportingClient,
        launch_id: str,
        end_time: datetime,
        status: Optional[str],
        logger: Any,
    ) -> FinishLaunchResponse:
        attempt = 1
        while True:
            try:
                return client.finish_launch(launch_id=launch_id, end_time=end_time, status=status)
            except PortalClientError as exc:
                if attempt >= FINISH_LAUNCH_ATTEMPTS:
                    raise
                logger.warning(
                    "finish_launch_retry",
                    attempt=attempt,
                    status_code=exc.status_code,
                    error=exc.message,
                )
                attempt += 1
                self._sleep(FINISH_LAUNCH_BACKOFF_SECONDS)

    def _convert_configured_reports(self) -> TestRun:
        paths = []
        for raw in self.settings.cucumber_json_files:
            path = resolve_file(raw, self.settings.base_dir)
            if path is not None:
                paths.append(path)
        return convert_reports(paths)
