"""Unit tests for the CLI: command registration and end-to-end demo runs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import typer
from typer.testing import CliRunner

from hybridforge.cli.app import app
from hybridforge.cli.commands.run import report
from hybridforge.models.rollouts import RolloutRecord, RolloutStatus
from hybridforge.models.runs import PipelineRun

runner = CliRunner()

TARGETS_TOML = """
[targets.staging]
cluster_kind = "kubernetes"
endpoint = "https://api.staging.example.com:6443"
credential_ref = "staging-deployer"

[targets.production]
cluster_kind = "openshift"
endpoint = "https://api.prod.example.com:6443"
credential_ref = "production-deployer"
"""


def _demo(tmp_path: Path, *extra: str):
    return runner.invoke(app, [
        "--log-level", "CRITICAL",
        "demo",
        "--ledger", str(tmp_path / "ledger.db"),
        "--manifests", str(tmp_path / "manifests"),
        *extra,
    ])


def _json(output: str) -> dict[str, Any]:
    return json.loads(output[output.index("{"):])


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "Usage" in result.output or "usage" in result.output.lower()

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "demo", "targets", "history", "verify", "rollback"):
            assert command in result.output

    def test_run_requires_target(self):
        result = runner.invoke(app, ["run", "abc"])
        assert result.exit_code != 0


# ---------------------------------------------------------------------------
# Test: demo pipeline
# ---------------------------------------------------------------------------


class TestDemoCommand:
    def test_demo_succeeds(self, tmp_path: Path):
        result = _demo(tmp_path)
        assert result.exit_code == 0, result.output
        assert "SUCCEEDED" in result.output

    def test_one_failing_target_fails_the_run(self, tmp_path: Path):
        result = _demo(tmp_path, "--fail-target", "production", "--json")
        assert result.exit_code == 1, result.output
        summary = _json(result.output)
        assert summary["status"] == "failed"
        assert summary["targets"]["staging"]["status"] == "healthy"
        assert summary["targets"]["production"]["status"] == "failed"
        assert summary["targets"]["production"]["error"]["error_type"] == "ApplyError"

    def test_critical_finding_blocks_deploy(self, tmp_path: Path):
        result = _demo(tmp_path, "--critical", "--json")
        assert result.exit_code == 1
        summary = _json(result.output)
        assert summary["failed_stage"] == "scan"
        assert summary["failure"]["kind"] == "policy"
        assert summary["scan"]["blocking"] == ["CVE-2021-44228"]
        assert summary["targets"]["staging"] == {"status": None}

    def test_flaky_scan_recovers(self, tmp_path: Path):
        result = _demo(tmp_path, "--flaky-scan", "--json")
        assert result.exit_code == 0, result.output


class TestExitCodes:
    @pytest.mark.parametrize(
        ("statuses", "code"),
        [
            ((RolloutStatus.HEALTHY, RolloutStatus.HEALTHY), 0),
            ((RolloutStatus.HEALTHY, RolloutStatus.ROLLED_BACK), 2),
            ((RolloutStatus.ROLLED_BACK, RolloutStatus.FAILED), 1),
        ],
    )
    def test_exit_code_follows_worst_target(self, statuses, code):
        run = PipelineRun(trigger_revision="abc", target_names=["staging", "production"])
        run.rollouts = {
            name: RolloutRecord(target_name=name, artifact_digest="sha256:x", status=status)
            for name, status in zip(run.target_names, statuses)
        }
        run.finalize()
        with pytest.raises(typer.Exit) as excinfo:
            report(run, as_json=True)
        assert excinfo.value.exit_code == code


# ---------------------------------------------------------------------------
# Test: targets, history and verify
# ---------------------------------------------------------------------------


class TestInspectionCommands:
    def test_targets_lists_file(self, tmp_path: Path):
        path = tmp_path / "targets.toml"
        path.write_text(TARGETS_TOML)
        result = runner.invoke(app, ["targets", "--targets-file", str(path)])
        assert result.exit_code == 0
        assert "staging" in result.output
        assert "production" in result.output

    def test_targets_missing_file(self, tmp_path: Path):
        result = runner.invoke(app, ["targets", "--targets-file", str(tmp_path / "nope.toml")])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_history_and_verify_after_demo(self, tmp_path: Path):
        summary = _json(_demo(tmp_path, "--json").output)
        ledger = str(tmp_path / "ledger.db")

        runs = runner.invoke(app, ["history", "--ledger", ledger])
        assert runs.exit_code == 0
        assert summary["run_id"] in runs.output

        history = runner.invoke(app, ["history", "staging", "--ledger", ledger])
        assert history.exit_code == 0
        assert "Rollout history" in history.output

        verify = runner.invoke(app, ["verify", summary["run_id"], "--ledger", ledger])
        assert verify.exit_code == 0
        assert "intact" in verify.output

    def test_history_without_ledger(self, tmp_path: Path):
        result = runner.invoke(app, ["history", "--ledger", str(tmp_path / "missing.db")])
        assert result.exit_code == 1
        assert "Ledger not found" in result.output
