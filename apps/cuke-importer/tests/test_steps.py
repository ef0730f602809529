from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from conftest import RecordingClient
from cuke_importer.models import Embedding, Status, Step, StepSection
from cuke_importer.steps import (
    SECTION_NAMING,
    StepImporter,
    container_name,
    step_name,
    step_type,
)
from cuke_importer.timeline import to_nanos

START = datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc)
MS = 1_000_000


def _step(name: str, duration_ms: int = 0, result: Status = Status.PASSED, **extra) -> Step:
    extra.setdefault("section", StepSection.SCENARIO)
    return Step(keyword="Given ", name=name, duration=duration_ms * MS, result=result, **extra)


def _hook(section: StepSection, location: str, duration_ms: int, result: Status = Status.PASSED) -> Step:
    return Step(section=section, location=location, duration=duration_ms * MS, result=result)


def _at(ms: int) -> datetime:
    return START + timedelta(milliseconds=ms)


def test_naming_table_covers_every_section() -> None:
    assert set(SECTION_NAMING) == set(StepSection)
    assert container_name(StepSection.BEFORE_SCENARIO) == "Before Hooks"
    assert container_name(StepSection.BACKGROUND) == "Background"
    assert container_name(StepSection.SCENARIO) == "Scenario"
    assert container_name(StepSection.AFTER_SCENARIO) == "After Hooks"
    assert [step_type(section) for section in StepSection] == [
        "before_test",
        "test",
        "test",
        "after_test",
        "before_method",
        "after_method",
    ]


def test_step_names_follow_section_templates() -> None:
    assert step_name(_step("a user")) == "Given a user"
    assert step_name(_step("a user", section=StepSection.BACKGROUND)) == "Given a user"
    assert step_name(_hook(StepSection.BEFORE_SCENARIO, "Hooks.setUp()", 0)) == "Before Hook: Hooks.setUp()"
    assert step_name(_hook(StepSection.AFTER_SCENARIO, "Hooks.tearDown()", 0)) == "After Hook: Hooks.tearDown()"
    assert step_name(_hook(StepSection.BEFORE_STEP, "Hooks.beforeStep()", 0)) == "Before Step: Hooks.beforeStep()"
    assert step_name(_hook(StepSection.AFTER_STEP, "Hooks.afterStep()", 0)) == "After Step: Hooks.afterStep()"


def test_step_sections_have_no_container() -> None:
    with pytest.raises(ValueError):
        container_name(StepSection.BEFORE_STEP)
    with pytest.raises(ValueError):
        container_name(StepSection.AFTER_STEP)


def test_empty_section_makes_no_calls(recording_client: RecordingClient) -> None:
    importer = StepImporter(recording_client, "launch-1")

    result = importer.write_section([], to_nanos(START), "scenario-1")

    assert result.clock == to_nanos(START)
    assert result.status is None
    assert recording_client.calls == []


def test_section_walks_clock_through_steps_and_step_hooks(recording_client: RecordingClient) -> None:
    second = _step(
        "the cart is paid",
        2_000,
        before_steps=[_hook(StepSection.BEFORE_STEP, "Hooks.before()", 500)],
        after_steps=[_hook(StepSection.AFTER_STEP, "Hooks.after()", 250)],
    )
    steps = [_step("a cart", 1_000), second]
    importer = StepImporter(recording_client, "launch-1")

    result = importer.write_section(steps, to_nanos(START), "scenario-1")

    assert result.clock == to_nanos(START) + 3_750 * MS
    container = recording_client.item_named("Scenario")
    assert container["parent_id"] == "scenario-1"
    assert container["has_stats"] is False
    assert container["item_type"] == "test"
    assert container["start_time"] == START

    expected = {
        "Given a cart": (0, 1_000),
        "Before Step: Hooks.before()": (1_000, 1_000),
        "Given the cart is paid": (1_500, 3_750),
        "After Step: Hooks.after()": (3_500, 3_500),
    }
    for name, (start_ms, end_ms) in expected.items():
        item = recording_client.item_named(name)
        assert item["parent_id"] == container["id"]
        assert item["start_time"] == _at(start_ms), name
        assert recording_client.finish_of(item["id"])["end_time"] == _at(end_ms), name

    for name in ("Before Step: Hooks.before()", "After Step: Hooks.after()"):
        hook = recording_client.item_named(name)
        assert recording_client.finish_of(hook["id"])["end_time"] == hook["start_time"], name

    container_finish = recording_client.finish_of(container["id"])
    assert container_finish["end_time"] == _at(3_750)
    assert container_finish["status"] == "passed"
    assert recording_client.names()[-1] == "finish_item"


def test_children_finish_before_their_container(recording_client: RecordingClient) -> None:
    steps = [_step("one", 10), _step("two", 10)]

    StepImporter(recording_client, "launch-1").write_section(steps, to_nanos(START), "scenario-1")

    finished = [call["item_id"] for call in recording_client.of("finish_item")]
    container_id = recording_client.item_named("Scenario")["id"]
    assert finished[-1] == container_id
    assert len(finished) == 3


def test_failed_step_fails_container(recording_client: RecordingClient) -> None:
    steps = [_step("one", 10), _step("two", 10, Status.FAILED), _step("three", 0, Status.SKIPPED)]

    result = StepImporter(recording_client, "launch-1").write_section(steps, to_nanos(START), "scenario-1")

    assert result.status == "failed"
    assert recording_client.finish_of(recording_client.item_named("Given two")["id"])["status"] == "failed"
    assert recording_client.finish_of(recording_client.item_named("Given three")["id"])["status"] == "skipped"


def test_failed_step_hook_does_not_fail_container(recording_client: RecordingClient) -> None:
    step = _step("one", 10, after_steps=[_hook(StepSection.AFTER_STEP, "Hooks.after()", 1, Status.FAILED)])

    result = StepImporter(recording_client, "launch-1").write_section([step], to_nanos(START), "scenario-1")

    assert result.status == "passed"
    hook = recording_client.item_named("After Step: Hooks.after()")
    assert recording_client.finish_of(hook["id"])["status"] == "failed"


def test_hook_section_uses_hook_container(recording_client: RecordingClient) -> None:
    hooks = [_hook(StepSection.AFTER_SCENARIO, "Hooks.tearDown()", 5)]

    StepImporter(recording_client, "launch-1").write_section(hooks, to_nanos(START), "scenario-1")

    container = recording_client.item_named("After Hooks")
    assert container["item_type"] == "after_test"
    hook = recording_client.item_named("After Hook: Hooks.tearDown()")
    assert hook["item_type"] == "after_test"
    assert hook["has_stats"] is False


def test_step_code_ref_includes_line(recording_client: RecordingClient) -> None:
    importer = StepImporter(recording_client, "launch-1", code_ref="features/cart.feature")

    importer.write_section([_step("one", line=12)], to_nanos(START), "scenario-1")

    assert recording_client.item_named("Given one")["code_ref"] == "features/cart.feature:12"


def test_logs_are_written_in_order_at_step_start(recording_client: RecordingClient) -> None:
    step = _step(
        "a table",
        1_000,
        result=Status.FAILED,
        table_data=[["name", "qty"], ["apple", "2"]],
        doc_string="{\"id\": 1}",
        error_message="AssertionError: expected 2",
    )

    StepImporter(recording_client, "launch-1").write_section([_step("before", 100), step], to_nanos(START), "s")

    item_id = recording_client.item_named("Given a table")["id"]
    logs = recording_client.of("add_log")
    assert [log["item_id"] for log in logs] == [item_id] * 3
    assert [log["level"] for log in logs] == ["INFO", "INFO", "ERROR"]
    assert all(log["time"] == _at(100) for log in logs)
    assert "apple" in logs[0]["message"]
    assert logs[1]["message"] == '\n"""\n{"id": 1}\n"""\n'
    assert logs[2]["message"] == "AssertionError: expected 2"


def test_blank_doc_string_and_error_are_not_logged(recording_client: RecordingClient) -> None:
    step = _step("blank", doc_string="  ", error_message="")

    StepImporter(recording_client, "launch-1").write_section([step], to_nanos(START), "s")

    assert recording_client.of("add_log") == []


def _encoded(payload: bytes) -> str:
    return base64.b64encode(payload).decode("ascii")


def test_file_embeddings_become_attachments(recording_client: RecordingClient, tmp_path: Path) -> None:
    step = _step(
        "a screenshot",
        embeddings=[
            Embedding(data=_encoded(b"\x89PNG fake"), mime_type="image/png", name="login page"),
            Embedding(data=_encoded(b'{"ok": true}'), mime_type="application/json", name="response"),
        ],
    )

    StepImporter(recording_client, "launch-1", temp_dir=tmp_path).write_section([step], to_nanos(START), "s")

    attachments = recording_client.of("add_file_attachment")
    assert len(attachments) == 2
    assert recording_client.of("add_log") == []
    first, second = attachments
    assert first["message"].startswith("rp_login_page_")
    assert first["message"].endswith("_attach.png")
    assert second["message"].endswith("_attach.json")
    assert first["item_id"] == recording_client.item_named("Given a screenshot")["id"]
    assert first["level"] == "INFO"
    assert recording_client.attachments[first["id"]] == b"\x89PNG fake"
    assert recording_client.attachments[second["id"]] == b'{"ok": true}'
    assert list(tmp_path.iterdir()) == []


def test_text_embedding_becomes_log(recording_client: RecordingClient) -> None:
    step = _step("a note", embeddings=[Embedding(data=_encoded(b"hello"), mime_type="text/plain", name="note")])

    StepImporter(recording_client, "launch-1").write_section([step], to_nanos(START), "s")

    logs = recording_client.of("add_log")
    assert [log["message"] for log in logs] == ["note: hello"]
    assert recording_client.of("add_file_attachment") == []


def test_other_embeddings_are_ignored(recording_client: RecordingClient) -> None:
    step = _step("a video", embeddings=[Embedding(data=_encoded(b"..."), mime_type="video/mp4", name="clip")])

    StepImporter(recording_client, "launch-1").write_section([step], to_nanos(START), "s")

    assert recording_client.of("add_log") == []
    assert recording_client.of("add_file_attachment") == []


def test_embedding_write_failure_skips_only_that_embedding(
    recording_client: RecordingClient, tmp_path: Path
) -> None:
    step = _step(
        "broken",
        embeddings=[
            Embedding(data=_encoded(b"png"), mime_type="image/png", name="shot"),
            Embedding(data=_encoded(b"text"), mime_type="text/plain", name="note"),
        ],
    )
    importer = StepImporter(recording_client, "launch-1", temp_dir=tmp_path / "missing")

    result = importer.write_section([step], to_nanos(START), "s")

    assert result.status == "passed"
    assert recording_client.of("add_file_attachment") == []
    assert [log["message"] for log in recording_client.of("add_log")] == ["note: text"]
    item_id = recording_client.item_named("Given broken")["id"]
    assert recording_client.finish_of(item_id)["status"] == "passed"


def test_undecodable_embedding_is_skipped(recording_client: RecordingClient) -> None:
    step = _step("garbage", embeddings=[Embedding(data="@@not-base64", mime_type="text/plain", name="x")])

    StepImporter(recording_client, "launch-1").write_section([step], to_nanos(START), "s")

    assert recording_client.of("add_log") == []
