"""Console reporter that adapts path-coverage output to the terminal it runs in."""

import sys
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import RunSummary, TestPath, TestResult
from .output_config import OutputFormat, resolve_output_format
from .prereqs import PrerequisiteCheck


class ConsoleReporter:
    """
    Smart console reporter that adapts to environment.

    Automatically detects:
    - Interactive terminals (use rich tables and panels)
    - CI/CD environments (use plain text)
    - Pipe/redirect scenarios (use plain text)

    In JSON mode nothing is printed per path; the run summary is emitted as a
    single JSON document at the end.
    """

    def __init__(self, output_format: OutputFormat = OutputFormat.AUTO, console: Optional[Console] = None):
        self.output_format = resolve_output_format(output_format)
        self.use_rich = self.output_format == OutputFormat.RICH
        self.console = console or (Console() if self.use_rich else None)

    @property
    def quiet(self) -> bool:
        return self.output_format == OutputFormat.JSON

    def report_prerequisites(self, checks: list[PrerequisiteCheck]) -> None:
        if self.quiet:
            return
        for check in checks:
            icon = "✓" if check.ok else "✗"
            suffix = "" if check.ok or check.required else " (optional)"
            line = f"{icon} {check.name}{suffix}"
            if check.detail and not check.ok:
                line += f": {check.detail}"
            if self.use_rich:
                self.console.print(Text(line, style="green" if check.ok else ("red" if check.required else "yellow")))
            else:
                print(line)

    def report_overview(self, paths: list[TestPath]) -> None:
        """Catalog listing used by both ``list`` and the start of ``run``."""
        if self.quiet:
            return
        if self.use_rich:
            table = Table(title="Path overview", show_header=True, header_style="bold cyan")
            table.add_column("Id", justify="right", width=4)
            table.add_column("Name", width=40)
            table.add_column("Behavior", width=18)
            table.add_column("Expected logs", justify="right", width=13)
            for path in paths:
                table.add_row(
                    str(path.id),
                    path.name,
                    path.behavior_mode.value if path.behavior_mode else "-",
                    str(len(path.expected_logs)),
                )
            self.console.print(table)
        else:
            for path in paths:
                behavior = path.behavior_mode.value if path.behavior_mode else "-"
                print(f"Path {path.id:<3} {path.name:<45} behavior={behavior}")
            print(f"{len(paths)} path(s)")

    def start_run(self, paths: list[TestPath]) -> None:
        if self.quiet:
            return
        self.report_overview(paths)
        if not self.use_rich:
            print("-" * 80)

    def report_path_start(self, path: TestPath, conversation_id: str) -> None:
        if self.quiet:
            return
        if self.use_rich:
            self.console.rule(f"[bold]{path.label}")
            self.console.print(f"[dim]{path.description}[/]")
            self.console.print(f"[dim]Conversation ID: {conversation_id}[/]")
            self.console.print(f"[dim]Waiting {path.wait_budget_ms / 1000:g}s for logs[/]")
        else:
            print("=" * 60)
            print(f"[Path {path.id}] {path.name}")
            print(f"Description: {path.description}")
            print(f"Conversation ID: {conversation_id}")
            print(f"Waiting {path.wait_budget_ms / 1000:g}s for logs")

    def report_path_result(self, result: TestResult) -> None:
        if self.quiet:
            return
        status = "✓ PASS" if result.passed else f"✗ {result.state.value.upper()}"
        lines = []
        if result.triggered_at:
            lines.append(f"Triggered at: {result.triggered_at}")
        lines.append(f"Records retrieved: {result.records_retrieved}")
        if result.logs_found:
            lines.append(f"Logs found: {', '.join(result.logs_found)}")
        if self.use_rich:
            self.console.print(Text(f"{status} {result.path} ({result.duration_ms:.0f}ms)",
                                    style="bold green" if result.passed else "bold red"))
            for line in lines:
                self.console.print(f"  [dim]{line}[/]")
            for error in result.errors:
                self.console.print(f"  [red]Error: {error}[/]")
        else:
            print(f"{status} {result.path} ({result.duration_ms:.0f}ms)")
            for line in lines:
                print(f"  {line}")
            for error in result.errors:
                print(f"  Error: {error}")

    def finish_run(self, summary: RunSummary) -> None:
        """Display final summary."""
        if self.quiet:
            print(summary.model_dump_json(indent=2))
            return
        if self.use_rich:
            table = Table(show_header=True, header_style="bold cyan")
            table.add_column("Path", width=48)
            table.add_column("Status", width=10)
            table.add_column("Duration", justify="right", width=12)
            for result in summary.results:
                table.add_row(
                    result.path,
                    Text("✓ PASS" if result.passed else f"✗ {result.state.value.upper()}",
                         style="green" if result.passed else "red"),
                    f"{result.duration_ms:.0f}ms",
                )

            summary_text = Text()
            summary_text.append(f"Total: {summary.total}  ", style="bold")
            summary_text.append(f"Passed: {summary.passed}  ", style="bold green")
            summary_text.append(f"Failed: {summary.failed}  ", style="bold red" if summary.failed else "bold green")
            summary_text.append(f"Duration: {summary.duration_ms:.0f}ms", style="bold cyan")

            status = "✓ ALL PATHS PASSED" if summary.all_passed else "✗ SOME PATHS FAILED"
            self.console.print()
            self.console.print(table)
            self.console.print(Panel(
                summary_text,
                title=Text(status, style="bold green" if summary.all_passed else "bold red"),
                border_style="green" if summary.all_passed else "red",
            ))
        else:
            print("-" * 80)
            for result in summary.results:
                print(f"{'✓' if result.passed else '✗'} {result.path}")
            print(f"Total: {summary.total} | Passed: {summary.passed} | Failed: {summary.failed} "
                  f"| Duration: {summary.duration_ms:.0f}ms")
            print("✓ ALL PATHS PASSED" if summary.all_passed else "✗ SOME PATHS FAILED")

    def print_error(self, message: str) -> None:
        """Print an error message."""
        if self.use_rich:
            self.console.print(f"[bold red]Error:[/] {message}")
        else:
            print(f"Error: {message}", file=sys.stderr if self.quiet else sys.stdout)

    def print_info(self, message: str) -> None:
        """Print an info message."""
        if self.quiet:
            return
        if self.use_rich:
            self.console.print(f"[cyan]{message}[/]")
        else:
            print(message)
