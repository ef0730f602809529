"""CLI entrypoint for cuke-portal-import."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Optional

import typer

if __package__ in {None, ""}:
    package_root = Path(__file__).resolve().parents[1]
    if str(package_root) not in sys.path:
        sys.path.insert(0, str(package_root))
    __package__ = "cuke_importer"

from .client import PortalClientError
from .config import ConfigError, load_settings
from .console_reporter import ConsoleReporter
from .converter import ReportFormatError, convert_reports
from .launch import LaunchImporter
from .logging_utils import configure_logging
from .models import LaunchMode, LaunchStatus, RunMetadata
from .output_config import get_log_format, get_output_format

app = typer.Typer(help="Import Cucumber JSON reports into ReportPortal as launches.")


def _absolute(paths: list[Path]) -> list[str]:
    return [str(path.expanduser().resolve()) for path in paths]


def _present(**values: Any) -> dict[str, Any]:
    """Drop options left unset on the command line."""

    return {key: value for key, value in values.items() if value is not None}


@app.command()
def import_reports(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        exists=True,
        dir_okay=False,
        readable=True,
        help="YAML settings file.",
    ),
    report: list[Path] = typer.Option(
        [],
        "--report",
        "-r",
        help="Cucumber JSON report(s); replaces the configured report files.",
    ),
    launch_name: Optional[str] = typer.Option(None, help="Launch name."),
    description: Optional[str] = typer.Option(None, help="Launch description."),
    attributes: Optional[str] = typer.Option(None, help="Launch attributes, e.g. 'env:qa;smoke'."),
    attachment: list[Path] = typer.Option(
        [],
        "--attachment",
        help="File(s) attached to the launch itself.",
    ),
    rerun_of: Optional[str] = typer.Option(None, help="UUID of the launch this import reruns."),
    mode: Optional[LaunchMode] = typer.Option(None, case_sensitive=False, help="Launch mode."),
    threads_features: Optional[int] = typer.Option(None, min=1, help="Features imported in parallel."),
    threads_scenarios: Optional[int] = typer.Option(
        None,
        min=1,
        help="Scenarios imported in parallel per feature.",
    ),
    endpoint: Optional[str] = typer.Option(None, help="ReportPortal base URL."),
    project: Optional[str] = typer.Option(None, help="ReportPortal project name."),
    api_key: Optional[str] = typer.Option(None, help="ReportPortal API key."),
    previous_report: list[Path] = typer.Option(
        [],
        "--previous-report",
        help="Report(s) of the original run; the import then spans both runs.",
    ),
    launch_status: Optional[LaunchStatus] = typer.Option(
        None,
        case_sensitive=False,
        help="Explicit status sent when finishing the launch.",
    ),
    log_level: str = typer.Option("INFO", help="Logging level."),
    log_format: Optional[str] = typer.Option(
        None,
        help="Log output format: console, plain or json. Defaults to CONSOLE_OUTPUT_FORMAT.",
    ),
    output_format: Optional[str] = typer.Option(
        None,
        help="Summary output format: auto, rich, plain or json. Defaults to CONSOLE_OUTPUT_FORMAT.",
    ),
) -> None:
    """Import the configured Cucumber reports as one launch."""

    logger = configure_logging(log_level, get_log_format(log_format))
    reporter = ConsoleReporter(get_output_format(output_format))

    overrides: dict[str, Any] = {
        "launch": _present(
            name=launch_name,
            description=description,
            attributes=attributes,
            attachments=_absolute(attachment) if attachment else None,
            rerun_of=rerun_of,
            mode=mode,
        ),
        "threads": _present(features=threads_features, scenarios=threads_scenarios),
        "portal": _present(endpoint=endpoint, project_name=project, api_key=api_key),
    }
    if report:
        overrides["cucumber_json_files"] = _absolute(report)
    try:
        settings = load_settings(config, overrides=overrides)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc

    importer = LaunchImporter(settings)
    metadata = RunMetadata(name=settings.launch.name, status=launch_status)
    try:
        if previous_report:
            previous = convert_reports([Path(path) for path in _absolute(previous_report)])
            previous = previous.model_copy(update={"metadata": metadata})
            result = importer.import_as_rerun_of(previous)
        else:
            result = importer.import_cucumber_reports(metadata)
    except ReportFormatError as exc:
        reporter.print_error(str(exc))
        raise typer.Exit(code=1) from exc
    except PortalClientError as exc:
        logger.error("launch_import_failed", status_code=exc.status_code, error=exc.message)
        reporter.print_error(str(exc))
        raise typer.Exit(code=1) from exc

    if result is None:
        reporter.print_error("Nothing to import: the reports contain no features")
        raise typer.Exit(code=1)

    reporter.report_import(result)


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
