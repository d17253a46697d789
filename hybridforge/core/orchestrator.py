"""Pipeline orchestrator: the central coordinator for hybridforge runs.

Wires the TargetRegistry, ArtifactBuilder, VulnerabilityGate and
RolloutCoordinator into one pipeline::

    resolve targets -> build -> scan -> { deploy <target> ... }   (parallel)

The build/scan prefix is strictly sequential and any failure in it
aborts the run. Deploy branches start only after a passing verdict for
the built artifact exists; they run concurrently, are joined before the
run is finalized, and never cancel each other.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone

from hybridforge.core.builder import ArtifactBuilder, BuildTool
from hybridforge.core.cluster import ClusterFactory
from hybridforge.core.errors import HybridforgeError, ScanPolicyViolation
from hybridforge.core.manifest_store import ManifestStore
from hybridforge.core.rollout import RolloutCoordinator
from hybridforge.core.run_ledger import RunLedger
from hybridforge.core.scan_gate import ScanTool, VulnerabilityGate
from hybridforge.core.secrets import SecretStore
from hybridforge.core.target_registry import TargetRegistry
from hybridforge.models.artifacts import Artifact
from hybridforge.models.config import PipelineConfig
from hybridforge.models.ledger import LedgerEntry
from hybridforge.models.rollouts import (
    ErrorKind,
    RolloutRecord,
    RolloutStatus,
    StageError,
)
from hybridforge.models.runs import PipelineRun, RunStatus
from hybridforge.models.scans import ScanVerdict
from hybridforge.models.targets import DeploymentTarget

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Central pipeline orchestrator.

    Parameters
    ----------
    registry:
        The deployment targets this orchestrator may deploy to.
    build_tool, scan_tool, cluster_factory, secret_store:
        External collaborators.
    config:
        Pipeline configuration. Uses defaults if not provided.
    clock, sleep:
        Time sources for backoff and health polling.
    """

    def __init__(
        self,
        registry: TargetRegistry,
        *,
        build_tool: BuildTool,
        scan_tool: ScanTool,
        cluster_factory: ClusterFactory,
        secret_store: SecretStore,
        config: PipelineConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or PipelineConfig()
        self.registry = registry

        # Core subsystems
        self.ledger = RunLedger(self.config.ledger_db_path)
        self.manifest_store = ManifestStore(self.config.manifest_store_path)
        self.builder = ArtifactBuilder(
            build_tool,
            context=self.config.build_context,
            repository=self.config.image_repository,
        )
        self.gate = VulnerabilityGate(
            scan_tool,
            threshold=self.config.severity_threshold,
            attempts=self.config.scan_attempts,
            backoff_base=self.config.backoff_base_seconds,
            sleep=sleep,
        )
        self.coordinator = RolloutCoordinator(
            cluster_factory,
            secret_store,
            self.manifest_store,
            ledger=self.ledger,
            health_timeout=self.config.health_timeout_seconds,
            poll_interval=self.config.health_poll_interval_seconds,
            apply_attempts=self.config.apply_attempts,
            backoff_base=self.config.backoff_base_seconds,
            rollback_on_failure=self.config.rollback_on_failure,
            clock=clock,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run(self, source_revision: str, target_names: Iterable[str]) -> PipelineRun:
        """Execute build -> scan -> parallel deploys and return the run.

        Never raises for stage failures: the returned PipelineRun reports
        which stage failed and why.
        """
        names = list(dict.fromkeys(target_names))
        run = PipelineRun(trigger_revision=source_revision, target_names=names)
        run.status = RunStatus.RUNNING
        self._record(run, "pipeline", "pending->running", detail={"targets": names})
        logger.info("run %s started for %s -> %s", run.run_id, source_revision, names)

        if not names:
            return self._abort(
                run,
                StageError(
                    stage="config",
                    kind=ErrorKind.CONFIGURATION,
                    error_type="NoTargets",
                    message="No deployment targets requested",
                ),
            )

        # 1. Resolve every target before doing any work
        try:
            targets = self.registry.resolve_all(names)
        except HybridforgeError as exc:
            return self._abort(run, exc.to_stage_error())

        # 2. Build
        self._record(run, "build", "pending->running")
        try:
            artifact = self.builder.build(source_revision)
        except HybridforgeError as exc:
            self._record(run, "build", "running->failed", detail={"error": exc.message})
            return self._abort(run, exc.to_stage_error())
        run.artifact = artifact
        self._record(run, "build", "running->passed", artifact_digest=artifact.digest)

        # 3. Scan and enforce policy
        self._record(run, "scan", "pending->running", artifact_digest=artifact.digest)
        try:
            verdict = self.gate.scan(artifact)
            run.scan_verdict = verdict
            run.scan_completed_at = datetime.now(timezone.utc)
            self.gate.enforce(verdict)
        except HybridforgeError as exc:
            self._record(
                run, "scan", "running->failed",
                artifact_digest=artifact.digest,
                detail={"error": exc.message, "kind": exc.kind.value},
            )
            return self._abort(run, exc.to_stage_error())
        self._record(
            run, "scan", "running->passed",
            artifact_digest=artifact.digest,
            detail={"severity_counts": verdict.severity_counts()},
        )

        # 4. Fan out one deploy per target, join on all
        run.rollouts = self._fan_out(run, targets, artifact, verdict)

        status = run.finalize()
        self._record(run, "pipeline", f"running->{status.value}", detail=run.summary())
        logger.info("run %s finished: %s", run.run_id, status.value)
        return run

    def _fan_out(
        self,
        run: PipelineRun,
        targets: list[DeploymentTarget],
        artifact: Artifact,
        verdict: ScanVerdict,
    ) -> dict[str, RolloutRecord]:
        if not verdict.passed or verdict.artifact_digest != artifact.digest:
            raise ScanPolicyViolation(
                f"Refusing to deploy {artifact.digest} without a passing scan verdict"
            )

        workers = min(len(targets), self.config.max_parallel_targets)
        records: dict[str, RolloutRecord] = {}
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rollout") as ex:
            futures: dict[str, Future[RolloutRecord]] = {
                target.name: ex.submit(
                    self.coordinator.deploy,
                    target,
                    artifact,
                    verdict=verdict,
                    run_id=run.run_id,
                )
                for target in targets
            }
            for name, future in futures.items():
                try:
                    records[name] = future.result()
                except Exception as exc:
                    # A branch bug must not take its siblings down with it.
                    logger.exception("rollout branch %s crashed", name)
                    records[name] = self._crashed_record(name, artifact, exc)

        return {target.name: records[target.name] for target in targets}

    @staticmethod
    def _crashed_record(name: str, artifact: Artifact, exc: Exception) -> RolloutRecord:
        error = (
            exc.to_stage_error()
            if isinstance(exc, HybridforgeError)
            else StageError(
                stage="deploy",
                kind=ErrorKind.INFRASTRUCTURE,
                error_type=type(exc).__name__,
                message=str(exc),
            )
        )
        return RolloutRecord(
            target_name=name,
            artifact_digest=artifact.digest,
            status=RolloutStatus.FAILED,
            error=error,
            finished_at=datetime.now(timezone.utc),
        )

    def _abort(self, run: PipelineRun, error: StageError) -> PipelineRun:
        logger.error("run %s aborted at %s: %s", run.run_id, error.stage, error.message)
        run.failure = error
        status = run.finalize()
        self._record(
            run,
            "pipeline",
            f"running->{status.value}",
            detail={"failure": error.model_dump(mode="json")},
        )
        return run

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def _record(
        self,
        run: PipelineRun,
        stage_id: str,
        transition: str,
        *,
        artifact_digest: str = "",
        detail: dict | None = None,
    ) -> None:
        self.ledger.append(
            LedgerEntry(
                run_id=run.run_id,
                stage_id=stage_id,
                state_transition=transition,
                artifact_digest=artifact_digest,
                detail=detail or {},
            )
        )

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a run."""
        return self.ledger.get_run_entries(run_id)

    def verify_chain(self, run_id: str) -> bool:
        """Verify the hash chain integrity of a run's ledger."""
        return self.ledger.verify_chain(run_id)
