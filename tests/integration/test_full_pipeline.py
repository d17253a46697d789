"""Integration tests: full build -> scan -> parallel deploy runs."""

from __future__ import annotations

import json
import subprocess
import threading

from hybridforge.core.builder import StaticBuildTool
from hybridforge.core.cluster import in_memory_factory
from hybridforge.core.scan_gate import StaticScanTool, TrivyScanTool
from hybridforge.models.rollouts import ErrorKind, RolloutStatus
from hybridforge.models.runs import RunStatus
from hybridforge.models.scans import Finding, Severity

CRITICAL = Finding(severity=Severity.CRITICAL, identifier="CVE-2021-44228", package="log4j-core")


class TestSuccessfulRun:
    def test_deploys_every_target(self, make_orchestrator, clusters):
        orchestrator = make_orchestrator()
        run = orchestrator.run("3f2c9e1a7b4d", ["staging", "production"])

        assert run.status == RunStatus.SUCCEEDED
        assert run.failed_stage is None
        assert set(run.rollouts) == {"staging", "production"}
        assert all(r.status == RolloutStatus.HEALTHY for r in run.rollouts.values())

        image = run.artifact.pinned_ref
        assert clusters["staging"].live_image("hello-staging", "hello-hybrid") == image
        assert clusters["production"].live_image("hello-production", "hello-hybrid") == image
        kinds = {m["kind"] for m in clusters["production"].live_manifests()}
        assert "Route" in kinds and "Ingress" not in kinds

    def test_deploys_start_after_scan(self, make_orchestrator):
        run = make_orchestrator().run("abc", ["staging", "production"])
        assert run.scan_completed_at is not None
        for record in run.rollouts.values():
            assert record.started_at >= run.scan_completed_at

    def test_ledger_records_every_stage(self, make_orchestrator):
        orchestrator = make_orchestrator()
        run = orchestrator.run("abc", ["staging"])
        transitions = [(e.stage_id, e.state_transition) for e in orchestrator.get_run_entries(run.run_id)]

        assert transitions[:5] == [
            ("pipeline", "pending->running"),
            ("build", "pending->running"),
            ("build", "running->passed"),
            ("scan", "pending->running"),
            ("scan", "running->passed"),
        ]
        assert ("deploy:staging", "applying->healthy") in transitions
        assert transitions[-1] == ("pipeline", "running->succeeded")
        assert orchestrator.verify_chain(run.run_id)

    def test_branches_run_concurrently(self, make_orchestrator, clusters):
        barrier = threading.Barrier(2, timeout=5)
        inner = in_memory_factory(clusters)

        def factory(target, credential):
            barrier.wait()  # both branches must be in flight at once
            return inner(target, credential)

        run = make_orchestrator(cluster_factory=factory).run("abc", ["staging", "production"])
        assert run.status == RunStatus.SUCCEEDED

    def test_duplicate_target_names_deployed_once(self, make_orchestrator, clusters):
        run = make_orchestrator().run("abc", ["staging", "staging"])
        assert run.target_names == ["staging"]
        assert clusters["staging"].apply_calls == 1

    def test_rerun_is_idempotent(self, make_orchestrator, clusters):
        scan_tool = StaticScanTool()
        orchestrator = make_orchestrator(scan_tool=scan_tool)
        orchestrator.run("abc", ["staging", "production"])
        again = orchestrator.run("abc", ["staging", "production"])

        assert again.status == RunStatus.SUCCEEDED
        assert all(r.reused for r in again.rollouts.values())
        assert clusters["staging"].apply_calls == 1
        assert clusters["production"].apply_calls == 1
        assert scan_tool.calls == 1

    def test_summary_is_json_serializable(self, make_orchestrator):
        run = make_orchestrator().run("abc", ["staging", "production"])
        summary = json.loads(json.dumps(run.summary()))
        assert summary["status"] == "succeeded"
        assert summary["scan"]["verdict"] == "pass"
        assert summary["worst_target_status"] == "healthy"


class TestFailureIsolation:
    def test_one_target_failing_leaves_other_healthy(self, make_orchestrator, clusters):
        clusters["production"].permanent_apply_error = "admission webhook denied the request"
        run = make_orchestrator().run("abc", ["staging", "production"])

        assert run.status == RunStatus.FAILED
        assert run.failed_stage == "deploy"
        assert run.failure is None
        assert run.rollouts["staging"].status == RolloutStatus.HEALTHY
        assert run.rollouts["production"].status == RolloutStatus.FAILED
        assert run.rollouts["production"].error.error_type == "ApplyError"
        assert clusters["staging"].apply_calls == 1

    def test_crashing_branch_is_contained(self, make_orchestrator, clusters):
        inner = in_memory_factory(clusters)

        def factory(target, credential):
            if target.name == "production":
                raise RuntimeError("client library bug")
            return inner(target, credential)

        run = make_orchestrator(cluster_factory=factory).run("abc", ["staging", "production"])
        assert run.status == RunStatus.FAILED
        assert run.rollouts["production"].status == RolloutStatus.FAILED
        assert run.rollouts["production"].error.error_type == "RuntimeError"
        assert run.rollouts["staging"].status == RolloutStatus.HEALTHY

    def test_all_targets_failing_fails_run(self, make_orchestrator, clusters):
        for cluster in clusters.values():
            cluster.permanent_apply_error = "forbidden"
        run = make_orchestrator().run("abc", ["staging", "production"])
        assert run.status == RunStatus.FAILED
        assert run.worst_target_status == RolloutStatus.FAILED

    def test_unhealthy_release_rolled_back_across_runs(self, make_orchestrator, clusters):
        orchestrator = make_orchestrator()
        first = orchestrator.run("rev-1", ["staging", "production"])
        bad = orchestrator.builder.build("rev-2")
        clusters["production"].unhealthy_images.add(bad.pinned_ref)

        second = orchestrator.run("rev-2", ["staging", "production"])

        assert second.status == RunStatus.ROLLED_BACK
        assert second.worst_target_status == RolloutStatus.ROLLED_BACK
        production = second.rollouts["production"]
        assert production.status == RolloutStatus.ROLLED_BACK
        assert production.rolled_back_to == first.rollouts["production"].manifest_revision
        assert clusters["production"].live_image("hello-production", "hello-hybrid") == first.artifact.pinned_ref
        assert second.rollouts["staging"].status == RolloutStatus.HEALTHY
        assert orchestrator.verify_chain(second.run_id)


class TestPrefixFailures:
    def test_build_failure_aborts(self, make_orchestrator, clusters):
        run = make_orchestrator(build_tool=StaticBuildTool(fail_with="COPY failed: no such file")).run(
            "abc", ["staging", "production"]
        )
        assert run.status == RunStatus.FAILED
        assert run.failed_stage == "build"
        assert run.failure.error_type == "BuildFailure"
        assert "COPY failed" in run.failure.detail
        assert run.artifact is None
        assert run.rollouts == {}
        assert clusters["staging"].apply_calls == 0

    def test_policy_violation_aborts(self, make_orchestrator, clusters):
        run = make_orchestrator(scan_tool=StaticScanTool(default=[CRITICAL])).run(
            "abc", ["staging", "production"]
        )
        assert run.status == RunStatus.FAILED
        assert run.failed_stage == "scan"
        assert run.failure.kind == ErrorKind.POLICY
        assert run.scan_verdict is not None and not run.scan_verdict.passed
        assert run.rollouts == {}
        assert clusters["production"].apply_calls == 0

    def test_scan_unavailable_is_infrastructure(self, make_orchestrator, clusters):
        run = make_orchestrator(scan_tool=StaticScanTool(transient_failures=99)).run("abc", ["staging"])
        assert run.failed_stage == "scan"
        assert run.failure.error_type == "ScanUnavailable"
        assert run.failure.kind == ErrorKind.INFRASTRUCTURE
        assert run.scan_verdict is None
        assert clusters["staging"].apply_calls == 0

    def test_unreadable_scanner_output_fails_scan_stage(self, make_orchestrator, clusters, monkeypatch):
        def fake_run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 0, stdout="WARN db update\n{", stderr="")

        monkeypatch.setattr("hybridforge.core.scan_gate.subprocess.run", fake_run)
        orchestrator = make_orchestrator(scan_tool=TrivyScanTool())
        run = orchestrator.run("abc", ["staging"])

        assert run.status == RunStatus.FAILED
        assert run.failed_stage == "scan"
        assert run.failure.error_type == "ScanUnavailable"
        assert clusters["staging"].apply_calls == 0
        assert orchestrator.get_run_entries(run.run_id)[-1].state_transition == "running->failed"

    def test_threshold_is_configurable(self, make_orchestrator, tmp_path):
        high = Finding(severity=Severity.HIGH, identifier="CVE-2", package="openssl")
        lenient = make_orchestrator(scan_tool=StaticScanTool(default=[high])).run("abc", ["staging"])
        assert lenient.status == RunStatus.SUCCEEDED

        strict = make_orchestrator(
            scan_tool=StaticScanTool(default=[high]),
            severity_threshold=Severity.HIGH,
            ledger_db_path=tmp_path / "strict.db",
        ).run("abc", ["staging"])
        assert strict.status == RunStatus.FAILED
        assert strict.failure.kind == ErrorKind.POLICY

    def test_unknown_target_aborts_before_build(self, make_orchestrator):
        build_tool = StaticBuildTool()
        orchestrator = make_orchestrator(build_tool=build_tool)
        run = orchestrator.run("abc", ["staging", "qa"])
        assert run.status == RunStatus.FAILED
        assert run.failed_stage == "config"
        assert run.failure.error_type == "UnknownTarget"
        assert "qa" in run.failure.message
        assert build_tool.builds == 0
        assert orchestrator.get_run_entries(run.run_id)[-1].state_transition == "running->failed"

    def test_no_targets(self, make_orchestrator):
        run = make_orchestrator().run("abc", [])
        assert run.status == RunStatus.FAILED
        assert run.failure.error_type == "NoTargets"
