"""Console summary of an import with environment detection."""

import json
import os
import sys
from typing import Any, Mapping, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import Status, TestRun
from .output_config import OutputFormat

CI_ENV_VARS = ("CI", "JENKINS_HOME", "GITLAB_CI", "TRAVIS")


def summarize(test_run: TestRun) -> dict[str, Any]:
    """Plain data view of an imported run, shared by every output format."""

    features = []
    for feature in test_run.features:
        passed = sum(1 for scenario in feature.scenarios if scenario.result == Status.PASSED)
        features.append(
            {
                "name": feature.name,
                "scenarios": len(feature.scenarios),
                "passed": passed,
                "failed": len(feature.scenarios) - passed,
            }
        )
    return {
        "launch_id": test_run.metadata.id,
        "link": test_run.metadata.link,
        "start_time": test_run.start_time.isoformat(),
        "end_time": test_run.end_time.isoformat(),
        "features": features,
    }


class ConsoleReporter:
    """
    Prints the import summary.

    Uses rich on interactive terminals and plain text in CI, when piped
    or when a plain/json format is requested.
    """

    def __init__(
        self,
        output_format: OutputFormat = OutputFormat.AUTO,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.output_format = output_format
        self._environ = os.environ if environ is None else environ
        self._detect_environment()
        self.console = Console() if self.use_rich else None

    def _detect_environment(self) -> None:
        if self.output_format == OutputFormat.RICH:
            self.use_rich = True
        elif self.output_format in (OutputFormat.PLAIN, OutputFormat.JSON):
            self.use_rich = False
        else:
            is_terminal = sys.stdout.isatty()
            is_ci = any(name in self._environ for name in CI_ENV_VARS)
            self.use_rich = is_terminal and not is_ci

    def report_import(self, test_run: TestRun) -> None:
        summary = summarize(test_run)
        if self.output_format == OutputFormat.JSON:
            print(json.dumps(summary))
            return

        total = sum(feature["scenarios"] for feature in summary["features"])
        failed = sum(feature["failed"] for feature in summary["features"])

        if self.use_rich:
            table = Table(show_header=True, header_style="bold cyan")
            table.add_column("Feature", width=48)
            table.add_column("Scenarios", justify="right")
            table.add_column("Passed", justify="right", style="green")
            table.add_column("Failed", justify="right")
            for feature in summary["features"]:
                table.add_row(
                    feature["name"],
                    str(feature["scenarios"]),
                    str(feature["passed"]),
                    Text(str(feature["failed"]), style="red" if feature["failed"] else "green"),
                )

            body = Text()
            body.append(f"Launch: {summary['launch_id']}\n", style="bold")
            if summary["link"]:
                body.append(f"Link: {summary['link']}\n", style="cyan")
            body.append(f"Scenarios: {total}  ", style="bold")
            body.append(f"Failed: {failed}", style="bold red" if failed else "bold green")

            title = "✓ LAUNCH IMPORTED" if failed == 0 else "✓ LAUNCH IMPORTED WITH FAILURES"
            self.console.print(table)
            self.console.print(Panel(body, title=Text(title, style="bold green"), border_style="green"))
        else:
            print("-" * 80)
            for feature in summary["features"]:
                print(
                    f"{feature['name']}: {feature['scenarios']} scenarios | "
                    f"Passed: {feature['passed']} | Failed: {feature['failed']}"
                )
            print("-" * 80)
            print(f"Launch: {summary['launch_id']}")
            if summary["link"]:
                print(f"Link: {summary['link']}")
            print(f"Scenarios: {total} | Failed: {failed}")

    def print_error(self, message: str) -> None:
        if self.use_rich:
            self.console.print(f"[bold red]Error:[/] {message}")
        else:
            print(f"Error: {message}")

    def print_info(self, message: str) -> None:
        if self.use_rich:
            self.console.print(f"[cyan]{message}[/]")
        else:
            print(message)
