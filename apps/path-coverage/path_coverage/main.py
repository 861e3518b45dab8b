"""CLI entrypoint for the path-coverage harness."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import httpx
import typer

if __package__ in {None, ""}:
    current_file = Path(__file__).resolve()
    package_root = current_file.parents[1]
    apps_dir = current_file.parents[2]
    for candidate in (package_root, apps_dir / "mock-provider"):
        candidate_str = str(candidate)
        if candidate_str not in sys.path and candidate.exists():
            sys.path.insert(0, candidate_str)
    __package__ = "path_coverage"

from mock_provider.logging_utils import configure_logging

from .artifacts import write_artifacts
from .audit import AuditItem, AuditStatus, audit_log_shapes
from .catalog import TriggerContext, load_catalog, select_paths
from .config import Settings
from .console_reporter import ConsoleReporter
from .errors import CatalogError, LogStoreError
from .log_store import LogStoreClient
from .models import RunSummary, TestPath
from .output_config import OutputFormat, get_output_format, log_format_for
from .prereqs import check_prerequisites, prerequisites_met
from .protocol import GatewayClient, ProviderClient
from .runner import ScenarioRunner

app = typer.Typer(help="Drive the OOTS bridge through its execution paths and verify the log trail.")

OUTPUT_FORMAT_HELP = "Output format: auto (detect), rich (interactive), plain (CI-friendly), json (machine-readable)."


def _setup(output_format: Optional[str], log_level: str) -> ConsoleReporter:
    fmt = get_output_format(output_format)
    # stdout carries the JSON document alone
    stream = sys.stderr if fmt is OutputFormat.JSON else None
    configure_logging(log_level, log_format_for(fmt), logger_name="path_coverage", stream=stream)
    return ConsoleReporter(output_format=fmt)


def _load(catalog: Optional[Path], reporter: ConsoleReporter) -> list[TestPath]:
    try:
        return load_catalog(catalog)
    except CatalogError as exc:
        reporter.print_error(str(exc))
        raise typer.Exit(code=1) from exc


async def _execute(
    settings: Settings,
    paths: list[TestPath],
    reporter: ConsoleReporter,
    *,
    skip_prereqs: bool,
) -> Optional[RunSummary]:
    async with httpx.AsyncClient(timeout=settings.http_timeout) as client:
        if not skip_prereqs:
            checks = await check_prerequisites(settings, client)
            reporter.report_prerequisites(checks)
            if not prerequisites_met(checks):
                return None

        context = TriggerContext(
            settings=settings,
            gateway=GatewayClient(settings.red_gateway_url, settings.domibus_user, settings.domibus_pass, client),
            provider=ProviderClient(settings.mock_emrex_url, client),
        )
        store = LogStoreClient(settings.es_url, index_pattern=settings.es_index_pattern, client=client)
        runner = ScenarioRunner(settings, log_store=store, trigger_context=context, observer=reporter)
        return await runner.run_all(paths)


@app.command()
def run(
    path: Optional[int] = typer.Option(None, "--path", help="Run only the path with this id."),
    skip_prereqs: bool = typer.Option(False, "--skip-prereqs", help="Do not probe the stack before running."),
    output_format: Optional[str] = typer.Option(None, "--output-format", "-f", help=OUTPUT_FORMAT_HELP),
    output_dir: Optional[Path] = typer.Option(
        None,
        help="Write summary.json and results.junit.xml under <output-dir>/<run-id>/.",
    ),
    catalog: Optional[Path] = typer.Option(None, help="Path catalog YAML (default: bundled catalog)."),
    log_level: str = typer.Option("WARNING", help="Log level."),
) -> None:
    """Execute catalog paths sequentially; exit code 0 only if every path passed."""

    reporter = _setup(output_format, log_level)
    paths = select_paths(_load(catalog, reporter), path)
    if not paths:
        reporter.print_error(f"No test path found with ID {path}")
        raise typer.Exit(code=1)

    settings = Settings.from_env()
    summary = asyncio.run(_execute(settings, paths, reporter, skip_prereqs=skip_prereqs))
    if summary is None:
        reporter.print_error("Prerequisite checks failed. Start the E2E stack first.")
        raise typer.Exit(code=1)

    if output_dir is not None:
        artifacts = write_artifacts(summary, output_dir)
        reporter.print_info(f"Artifacts written -> {artifacts.run_dir}")

    raise typer.Exit(code=0 if summary.all_passed else 1)


@app.command("list")
def list_paths(
    catalog: Optional[Path] = typer.Option(None, help="Path catalog YAML (default: bundled catalog)."),
    output_format: Optional[str] = typer.Option(None, "--output-format", "-f", help=OUTPUT_FORMAT_HELP),
) -> None:
    """Show the catalog overview."""

    reporter = _setup(output_format, "WARNING")
    paths = _load(catalog, reporter)
    if reporter.quiet:
        typer.echo(json.dumps([p.model_dump(mode="json") for p in paths], indent=2))
        return
    reporter.report_overview(paths)


def _print_audit(items: list[AuditItem]) -> None:
    icons = {AuditStatus.PASSED: "✓", AuditStatus.FAILED: "✗", AuditStatus.SKIPPED: "○"}
    for item in items:
        suffix = " - No document found (may not be triggered)" if item.status is AuditStatus.SKIPPED else ""
        typer.echo(f"{icons[item.status]} {item.rule.name}{suffix}")
        for error in item.errors:
            typer.echo(f"    - {error}")


async def _audit(settings: Settings) -> tuple[int, list[AuditItem]]:
    async with LogStoreClient(
        settings.es_url,
        index_pattern=settings.es_index_pattern,
        timeout=settings.http_timeout,
    ) as store:
        return await store.count(), await audit_log_shapes(store)


@app.command()
def audit(
    log_level: str = typer.Option("WARNING", help="Log level."),
) -> None:
    """Check the latest stored record of every known event action for its expected shape."""

    configure_logging(log_level, "plain", logger_name="path_coverage")
    settings = Settings.from_env()
    try:
        count, items = asyncio.run(_audit(settings))
    except LogStoreError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    typer.echo(f"Found {count} documents in index.")
    _print_audit(items)
    failed = sum(1 for item in items if item.status is AuditStatus.FAILED)
    passed = sum(1 for item in items if item.status is AuditStatus.PASSED)
    typer.echo(f"Results: {passed} passed, {failed} failed")
    raise typer.Exit(code=1 if failed else 0)


def run_cli() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run_cli()
