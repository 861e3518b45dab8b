"""Run artifacts: a JSON summary and a JUnit report per run."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import xml.etree.ElementTree as ET

from .models import RunSummary


@dataclass
class RunArtifacts:
    run_dir: Path
    summary_file: Path
    junit_file: Path


def prepare_artifacts(output_root: Path, run_id: str) -> RunArtifacts:
    run_dir = output_root / run_id
    run_dir.mkdir(parents=True, exist_ok=True)
    return RunArtifacts(
        run_dir=run_dir,
        summary_file=run_dir / "summary.json",
        junit_file=run_dir / "results.junit.xml",
    )


def write_artifacts(summary: RunSummary, output_root: Path) -> RunArtifacts:
    artifacts = prepare_artifacts(output_root, summary.run_id)
    artifacts.summary_file.write_text(summary.model_dump_json(indent=2), encoding="utf-8")
    _write_junit(summary, artifacts.junit_file)
    return artifacts


def _write_junit(summary: RunSummary, junit_file: Path) -> None:
    suite = ET.Element(
        "testsuite",
        attrib={
            "name": "path-coverage",
            "tests": str(summary.total),
            "failures": str(summary.failed),
            "time": str(summary.duration_ms / 1000),
        },
    )
    for result in summary.results:
        case = ET.SubElement(
            suite,
            "testcase",
            attrib={
                "classname": "path_coverage",
                "name": result.path,
                "time": str(result.duration_ms / 1000),
            },
        )
        if not result.passed:
            tag = "error" if result.state.value == "error" else "failure"
            failure = ET.SubElement(
                case,
                tag,
                attrib={"message": result.errors[0] if result.errors else "Path failed"},
            )
            failure.text = "\n".join(result.errors)
    tree = ET.ElementTree(suite)
    tree.write(junit_file, encoding="utf-8", xml_declaration=True)
