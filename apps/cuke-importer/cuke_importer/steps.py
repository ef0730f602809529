"""Step section import: containers, steps, step hooks, logs and attachments."""

from __future__ import annotations

import base64
import binascii
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from .client import ReportingClient
from .markdown import format_data_table
from .models import Embedding, Status, Step, StepSection
from .timeline import advance, to_datetime

LOGGER = structlog.get_logger("cuke_importer")

DOCSTRING_DECORATOR = '\n"""\n'
FILE_MIME_TYPES = {"image/png", "application/json"}
TEXT_MIME_TYPE = "text/plain"


@dataclass(frozen=True)
class SectionNaming:
    container: Optional[str]
    step_template: str
    item_type: str


SECTION_NAMING: dict[StepSection, SectionNaming] = {
    StepSection.BEFORE_SCENARIO: SectionNaming("Before Hooks", "Before Hook: {location}", "before_test"),
    StepSection.BACKGROUND: SectionNaming("Background", "{keyword} {name}", "test"),
    StepSection.SCENARIO: SectionNaming("Scenario", "{keyword} {name}", "test"),
    StepSection.AFTER_SCENARIO: SectionNaming("After Hooks", "After Hook: {location}", "after_test"),
    StepSection.BEFORE_STEP: SectionNaming(None, "Before Step: {location}", "before_method"),
    StepSection.AFTER_STEP: SectionNaming(None, "After Step: {location}", "after_method"),
}

_missing = set(StepSection) - set(SECTION_NAMING)
if _missing:
    raise RuntimeError(f"Missing naming for step sections: {sorted(s.value for s in _missing)}")


def container_name(section: StepSection) -> str:
    name = SECTION_NAMING[section].container
    if name is None:
        raise ValueError(f"Step section {section.value} has no container")
    return name


def step_name(step: Step) -> str:
    return SECTION_NAMING[step.section].step_template.format(
        keyword=step.keyword.strip(),
        name=step.name,
        location=step.location or "",
    )


def step_type(section: StepSection) -> str:
    return SECTION_NAMING[section].item_type


def roll_up(results: list[Status]) -> str:
    """``passed`` when every result passed, ``failed`` otherwise."""

    return Status.PASSED.value if all(result == Status.PASSED for result in results) else Status.FAILED.value


@dataclass(frozen=True)
class SectionResult:
    """Clock after a section and its rolled-up status (``None`` when empty)."""

    clock: int
    status: Optional[str] = None


class StepImporter:
    """Writes the step sections of one scenario under its scenario item."""

    def __init__(
        self,
        client: ReportingClient,
        launch_id: str,
        *,
        code_ref: Optional[str] = None,
        temp_dir: Optional[Path] = None,
    ) -> None:
        self._client = client
        self._launch_id = launch_id
        self._code_ref = code_ref
        self._temp_dir = temp_dir
        self._logger = LOGGER.bind(launch=launch_id)

    def write_section(self, steps: list[Step], start: int, parent_id: str) -> SectionResult:
        """Import ``steps`` as one container item starting at clock ``start``.

        Empty sections create nothing. The returned clock is where the next
        section starts.
        """

        if not steps:
            return SectionResult(clock=start)

        section = steps[0].section
        container_id = self._client.start_item(
            launch_id=self._launch_id,
            parent_id=parent_id,
            name=container_name(section),
            start_time=to_datetime(start),
            item_type=step_type(section),
            has_stats=False,
        )

        clock = start
        for step in steps:
            clock = self.write_step(step, clock, container_id)

        status = roll_up([step.result for step in steps])
        self._client.finish_item(
            launch_id=self._launch_id,
            item_id=container_id,
            end_time=to_datetime(clock),
            status=status,
        )
        return SectionResult(clock=clock, status=status)

    def write_step(self, step: Step, clock: int, container_id: str) -> int:
        """Import one step with its step hooks; returns the advanced clock."""

        for hook in step.before_steps:
            clock = self.write_hook(hook, clock, container_id)

        item_id = self._start_step(step, clock, container_id)
        self._write_logs(step, clock, item_id)
        clock = advance(clock, step.duration)

        for hook in step.after_steps:
            clock = self.write_hook(hook, clock, container_id)

        self._client.finish_item(
            launch_id=self._launch_id,
            item_id=item_id,
            end_time=to_datetime(clock),
            status=step.result.value,
        )
        return clock

    def write_hook(self, hook: Step, clock: int, container_id: str) -> int:
        """Start and immediately finish a step hook; returns the advanced clock."""

        item_id = self._start_step(hook, clock, container_id)
        self._client.finish_item(
            launch_id=self._launch_id,
            item_id=item_id,
            end_time=to_datetime(clock),
            status=hook.result.value,
        )
        return advance(clock, hook.duration)

    def _start_step(self, step: Step, clock: int, container_id: str) -> str:
        code_ref = None
        if self._code_ref is not None:
            code_ref = f"{self._code_ref}:{step.line}" if step.line is not None else self._code_ref
        return self._client.start_item(
            launch_id=self._launch_id,
            parent_id=container_id,
            name=step_name(step),
            start_time=to_datetime(clock),
            item_type=step_type(step.section),
            has_stats=False,
            code_ref=code_ref,
        )

    def _write_logs(self, step: Step, clock: int, item_id: str) -> None:
        time = to_datetime(clock)
        if step.table_data:
            table = format_data_table(step.table_data)
            if table.strip():
                self._log(item_id, "INFO", time, table)
        if step.doc_string and step.doc_string.strip():
            self._log(item_id, "INFO", time, f"{DOCSTRING_DECORATOR}{step.doc_string}{DOCSTRING_DECORATOR}")
        if step.error_message and step.error_message.strip():
            self._log(item_id, "ERROR", time, step.error_message)
        for embedding in step.embeddings:
            self._write_embedding(embedding, time, item_id)

    def _log(self, item_id: str, level: str, time: datetime, message: str) -> None:
        self._client.add_log(
            launch_id=self._launch_id,
            item_id=item_id,
            level=level,
            time=time,
            message=message,
        )

    def _write_embedding(self, embedding: Embedding, time: datetime, item_id: str) -> None:
        mime_type = embedding.mime_type.lower()
        if mime_type not in FILE_MIME_TYPES and mime_type != TEXT_MIME_TYPE:
            self._logger.debug("embedding_ignored", mime_type=embedding.mime_type, name=embedding.name)
            return
        try:
            payload = base64.b64decode(embedding.data, validate=False)
        except binascii.Error:
            self._logger.error("embedding_decode_failed", mime_type=embedding.mime_type, name=embedding.name)
            return

        if mime_type == TEXT_MIME_TYPE:
            text = payload.decode("utf-8", errors="replace")
            self._log(item_id, "INFO", time, f"{embedding.name or ''}: {text}")
            return

        try:
            path = self._write_temp_file(embedding, payload)
        except OSError:
            self._logger.exception("embedding_write_failed", name=embedding.name, temp_dir=str(self._temp_dir))
            return
        try:
            self._client.add_file_attachment(
                launch_id=self._launch_id,
                item_id=item_id,
                level="INFO",
                time=time,
                message=path.name,
                file_path=path,
            )
        finally:
            path.unlink(missing_ok=True)

    def _write_temp_file(self, embedding: Embedding, payload: bytes) -> Path:
        base_name = (embedding.name or "embedding").replace(" ", "_")
        extension = embedding.mime_type.split("/", 1)[1].lower()
        fd, raw_path = tempfile.mkstemp(
            prefix=f"rp_{base_name}_",
            suffix=f"_attach.{extension}",
            dir=self._temp_dir,
        )
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
        return Path(raw_path)
