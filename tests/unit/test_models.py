"""Tests for hybridforge data models."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from hybridforge.models import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    Artifact,
    ClusterKind,
    DeploymentTarget,
    ErrorKind,
    Finding,
    LedgerEntry,
    ManifestSpec,
    PipelineRun,
    RolloutRecord,
    RolloutStatus,
    RouteDialect,
    RunStatus,
    ScanVerdict,
    Severity,
    StageError,
    VerdictKind,
)


class TestArtifact:
    def test_pinned_ref_uses_digest(self, artifact: Artifact):
        assert artifact.pinned_ref == f"registry.test/hello-hybrid@sha256:{'a' * 64}"
        assert artifact.short_digest == "a" * 12

    def test_equality_considers_digest_only(self, make_artifact):
        first = make_artifact("b", source_revision="rev-1")
        second = make_artifact("b", source_revision="rev-2")
        assert first == second
        assert len({first, second}) == 1
        assert first != make_artifact("c")

    def test_frozen(self, artifact: Artifact):
        with pytest.raises(ValidationError):
            artifact.digest = "sha256:other"


class TestSeverity:
    def test_ordering(self):
        ranks = [s.rank for s in (Severity.UNKNOWN, Severity.LOW, Severity.MEDIUM,
                                  Severity.HIGH, Severity.CRITICAL)]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 5

    def test_parse_is_lenient(self):
        assert Severity.parse("CRITICAL") is Severity.CRITICAL
        assert Severity.parse(" Medium ") is Severity.MEDIUM
        assert Severity.parse("negligible") is Severity.UNKNOWN


class TestScanVerdict:
    def test_counts_and_blocking(self):
        verdict = ScanVerdict(
            artifact_digest="sha256:x",
            findings=[
                Finding(severity=Severity.CRITICAL, identifier="CVE-1"),
                Finding(severity=Severity.HIGH, identifier="CVE-2"),
                Finding(severity=Severity.HIGH, identifier="CVE-3"),
            ],
            verdict=VerdictKind.FAIL,
            threshold=Severity.HIGH,
        )
        counts = verdict.severity_counts()
        assert counts["critical"] == 1
        assert counts["high"] == 2
        assert counts["low"] == 0
        assert [f.identifier for f in verdict.blocking_findings] == ["CVE-1", "CVE-2", "CVE-3"]
        assert not verdict.passed


class TestDeploymentTarget:
    def test_route_dialect_follows_cluster_kind(self, staging, production):
        assert staging.route_dialect == RouteDialect.GENERIC
        assert production.route_dialect == RouteDialect.ROUTE_EXTENDED

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            DeploymentTarget(name="  ", endpoint="https://x", credential_ref="c")

    def test_zero_replicas_rejected(self):
        with pytest.raises(ValidationError):
            ManifestSpec(replicas=0)

    def test_cluster_kind_from_string(self):
        target = DeploymentTarget.model_validate({
            "name": "ocp",
            "cluster_kind": "openshift",
            "endpoint": "https://api.ocp:6443",
            "credential_ref": "ocp",
        })
        assert target.cluster_kind is ClusterKind.OPENSHIFT
        assert target.health_timeout_seconds is None


class TestRolloutTransitions:
    def test_terminal_states_have_no_exits(self):
        assert VALID_TRANSITIONS[RolloutStatus.HEALTHY] == set()
        assert VALID_TRANSITIONS[RolloutStatus.ROLLED_BACK] == set()

    def test_failed_can_only_roll_back(self):
        assert VALID_TRANSITIONS[RolloutStatus.FAILED] == {RolloutStatus.ROLLED_BACK}

    def test_terminal_statuses(self):
        assert RolloutStatus.APPLYING not in TERMINAL_STATUSES
        assert RolloutRecord(
            target_name="t", artifact_digest="d", status=RolloutStatus.FAILED
        ).is_terminal


def _record(name: str, status: RolloutStatus) -> RolloutRecord:
    return RolloutRecord(target_name=name, artifact_digest="sha256:x", status=status)


class TestPipelineRun:
    def test_run_id_format(self):
        run = PipelineRun(trigger_revision="abc")
        assert run.run_id.startswith("hf-")
        assert run.status == RunStatus.PENDING

    def test_all_healthy_succeeds(self):
        run = PipelineRun(trigger_revision="abc", target_names=["a", "b"])
        run.rollouts = {
            "a": _record("a", RolloutStatus.HEALTHY),
            "b": _record("b", RolloutStatus.HEALTHY),
        }
        assert run.finalize() == RunStatus.SUCCEEDED
        assert run.succeeded
        assert run.failed_stage is None
        assert run.finished_at is not None

    def test_healthy_and_rolled_back_reports_rolled_back(self):
        run = PipelineRun(trigger_revision="abc", target_names=["a", "b"])
        run.rollouts = {
            "a": _record("a", RolloutStatus.HEALTHY),
            "b": _record("b", RolloutStatus.ROLLED_BACK),
        }
        assert run.finalize() == RunStatus.ROLLED_BACK
        assert run.failed_stage == "deploy"
        assert run.worst_target_status == RolloutStatus.ROLLED_BACK

    def test_one_failed_target_fails_the_run(self):
        run = PipelineRun(trigger_revision="abc", target_names=["a", "b"])
        run.rollouts = {
            "a": _record("a", RolloutStatus.HEALTHY),
            "b": _record("b", RolloutStatus.FAILED),
        }
        assert run.finalize() == RunStatus.FAILED
        assert run.failed_stage == "deploy"

    def test_all_rolled_back_reports_rolled_back(self):
        run = PipelineRun(trigger_revision="abc", target_names=["a", "b"])
        run.rollouts = {
            "a": _record("a", RolloutStatus.ROLLED_BACK),
            "b": _record("b", RolloutStatus.ROLLED_BACK),
        }
        assert run.finalize() == RunStatus.ROLLED_BACK

    def test_non_terminal_record_fails_the_run(self):
        run = PipelineRun(trigger_revision="abc", target_names=["a"])
        run.rollouts = {"a": _record("a", RolloutStatus.APPLYING)}
        assert run.finalize() == RunStatus.FAILED

    def test_no_healthy_target_fails(self):
        run = PipelineRun(trigger_revision="abc", target_names=["a", "b"])
        run.rollouts = {
            "a": _record("a", RolloutStatus.FAILED),
            "b": _record("b", RolloutStatus.ROLLED_BACK),
        }
        assert run.finalize() == RunStatus.FAILED
        assert run.worst_target_status == RolloutStatus.FAILED

    def test_prefix_failure_fails(self):
        run = PipelineRun(trigger_revision="abc", target_names=["a"])
        run.failure = StageError(
            stage="build", kind=ErrorKind.INFRASTRUCTURE,
            error_type="BuildFailure", message="boom",
        )
        assert run.finalize() == RunStatus.FAILED
        assert run.failed_stage == "build"
        assert run.worst_target_status is None

    def test_summary_is_json_ready(self):
        run = PipelineRun(trigger_revision="abc", target_names=["a", "b"])
        run.rollouts = {"a": _record("a", RolloutStatus.HEALTHY)}
        run.finalize()
        summary = json.loads(json.dumps(run.summary()))
        assert summary["status"] == "failed"
        assert summary["targets"]["a"]["status"] == "healthy"
        assert summary["targets"]["b"] == {"status": None}
        assert summary["artifact"] is None


class TestLedgerEntry:
    def test_to_state(self):
        entry = LedgerEntry(run_id="r", stage_id="deploy:a", state_transition="applying->healthy")
        assert entry.to_state == "healthy"
        assert entry.entry_hash == ""
