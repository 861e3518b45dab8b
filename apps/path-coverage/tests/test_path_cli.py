from __future__ import annotations

import json
import socket
import xml.etree.ElementTree as ET
from pathlib import Path

import pytest
from typer.testing import CliRunner

from path_coverage import main as cli
from path_coverage.catalog import load_catalog, select_paths
from path_coverage.console_reporter import ConsoleReporter
from path_coverage.models import RunState, RunSummary, TestResult
from path_coverage.output_config import OutputFormat

runner = CliRunner()


def _closed_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture()
def dead_stack(monkeypatch: pytest.MonkeyPatch) -> None:
    port = _closed_port()
    monkeypatch.setenv("ES_HOST", "127.0.0.1")
    monkeypatch.setenv("ES_PORT", str(port))
    for name in ("RED_GATEWAY_URL", "BLUE_GATEWAY_URL", "MOCK_EMREX_URL", "BRIDGE_URL"):
        monkeypatch.setenv(name, f"http://127.0.0.1:{port}")
    monkeypatch.setenv("PATH_COVERAGE_HTTP_TIMEOUT", "2")


def _summary(*states: RunState) -> RunSummary:
    results = [
        TestResult(
            path=f"Path {index}: sample",
            path_id=index,
            passed=state is RunState.PASSED,
            state=state,
            errors=[] if state is RunState.PASSED else ["Missing log: evidence_response_sent (logger: any, outcome: any)"],
            duration_ms=12.5,
        )
        for index, state in enumerate(states, start=1)
    ]
    return RunSummary(
        run_id="run-42",
        started_at="2024-05-01T10:00:00.000Z",
        finished_at="2024-05-01T10:01:00.000Z",
        duration_ms=60000,
        results=results,
    )


def test_list_shows_catalog() -> None:
    result = runner.invoke(cli.app, ["list", "--output-format", "plain"])

    assert result.exit_code == 0
    assert "Happy Path (Preview Required)" in result.output
    assert "12 path(s)" in result.output


def test_list_json_is_machine_readable() -> None:
    result = runner.invoke(cli.app, ["list", "--output-format", "json"])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert [entry["id"] for entry in payload] == list(range(1, 13))


def test_run_unknown_path_exits_nonzero() -> None:
    result = runner.invoke(cli.app, ["run", "--path", "99", "--output-format", "plain"])

    assert result.exit_code == 1
    assert "No test path found with ID 99" in result.output


def test_run_with_broken_catalog_exits_nonzero(tmp_path: Path) -> None:
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text("paths: {}", encoding="utf-8")

    result = runner.invoke(cli.app, ["run", "--catalog", str(catalog), "--output-format", "plain"])

    assert result.exit_code == 1


def test_run_aborts_when_prerequisites_fail(dead_stack: None) -> None:
    result = runner.invoke(cli.app, ["run", "--path", "1", "--output-format", "plain"])

    assert result.exit_code == 1
    assert "✗ Elasticsearch" in result.output
    assert "Prerequisite checks failed" in result.output


def test_run_exit_code_and_artifacts(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_execute(settings, paths, reporter, *, skip_prereqs):
        assert skip_prereqs is True
        assert [p.id for p in paths] == [3]
        return _summary(RunState.PASSED)

    monkeypatch.setattr(cli, "_execute", fake_execute)

    result = runner.invoke(
        cli.app,
        ["run", "--path", "3", "--skip-prereqs", "--output-format", "plain", "--output-dir", str(tmp_path)],
    )

    assert result.exit_code == 0
    summary = json.loads((tmp_path / "run-42" / "summary.json").read_text(encoding="utf-8"))
    assert summary["results"][0]["state"] == "passed"
    suite = ET.parse(tmp_path / "run-42" / "results.junit.xml").getroot()
    assert suite.attrib["tests"] == "1"
    assert suite.attrib["failures"] == "0"


def test_failed_paths_make_the_run_fail(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_execute(settings, paths, reporter, *, skip_prereqs):
        return _summary(RunState.PASSED, RunState.FAILED, RunState.ERROR)

    monkeypatch.setattr(cli, "_execute", fake_execute)

    result = runner.invoke(cli.app, ["run", "--skip-prereqs", "--output-format", "plain", "--output-dir", str(tmp_path)])

    assert result.exit_code == 1
    suite = ET.parse(tmp_path / "run-42" / "results.junit.xml").getroot()
    assert suite.attrib["failures"] == "2"
    cases = suite.findall("testcase")
    assert cases[1].find("failure") is not None
    assert cases[2].find("error") is not None


def test_audit_reports_unreachable_store(dead_stack: None) -> None:
    result = runner.invoke(cli.app, ["audit"])

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_json_run_keeps_stdout_parseable(dead_stack: None) -> None:
    result = runner.invoke(cli.app, ["run", "--path", "1", "--skip-prereqs", "--output-format", "json"])

    assert result.exit_code == 1
    summary = json.loads(result.stdout)
    assert summary["results"][0]["state"] == "error"
    assert summary["results"][0]["errors"][0].startswith("TriggerError")


def test_path_start_announces_wait_budget(capsys: pytest.CaptureFixture[str]) -> None:
    path = select_paths(load_catalog(), 12)[0]

    ConsoleReporter(OutputFormat.PLAIN).report_path_start(path, "conv-1")

    out = capsys.readouterr().out
    assert "[Path 12] Session Timeout" in out
    assert "Waiting 15s for logs" in out
