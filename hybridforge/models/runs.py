"""Pipeline run model: the explicit value threaded through every stage."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hybridforge.models.artifacts import Artifact
from hybridforge.models.rollouts import (
    STATUS_SEVERITY,
    RolloutRecord,
    RolloutStatus,
    StageError,
)
from hybridforge.models.scans import ScanVerdict


class RunStatus(str, Enum):
    """Overall outcome of a pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"  # every requested target healthy
    ROLLED_BACK = "rolled_back"  # worst target was rolled back
    FAILED = "failed"  # prefix failure, or some target failed


# Worst terminal target status -> overall run status.
_RUN_STATUS_FOR: dict[RolloutStatus, RunStatus] = {
    RolloutStatus.HEALTHY: RunStatus.SUCCEEDED,
    RolloutStatus.ROLLED_BACK: RunStatus.ROLLED_BACK,
    RolloutStatus.FAILED: RunStatus.FAILED,
}


def _new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"hf-{ts}-{uuid.uuid4().hex[:6]}"


class PipelineRun(BaseModel):
    """Everything one execution of the pipeline produced.

    Owns the artifact, the scan verdict and one RolloutRecord per
    requested target. ``failure`` is set only for prefix-stage failures
    (configuration, build, scan); branch failures live on the records.
    """

    model_config = ConfigDict(validate_assignment=True)

    run_id: str = Field(default_factory=_new_run_id)
    trigger_revision: str
    target_names: list[str] = []
    artifact: Artifact | None = None
    scan_verdict: ScanVerdict | None = None
    rollouts: dict[str, RolloutRecord] = {}
    status: RunStatus = RunStatus.PENDING
    failure: StageError | None = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    scan_completed_at: datetime | None = None
    finished_at: datetime | None = None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def failed_stage(self) -> str | None:
        """Name of the stage that failed the run, if any."""
        if self.failure is not None:
            return self.failure.stage
        for name in self.target_names:
            record = self.rollouts.get(name)
            if record is not None and record.status != RolloutStatus.HEALTHY:
                return "deploy"
        return None

    @property
    def worst_target_status(self) -> RolloutStatus | None:
        statuses = [
            self.rollouts[name].status
            for name in self.target_names
            if name in self.rollouts
        ]
        if not statuses:
            return None
        return max(statuses, key=lambda s: STATUS_SEVERITY[s])

    def finalize(self) -> RunStatus:
        """Compute and store the overall status. Call once, after the join.

        A prefix failure fails the run. Otherwise the run takes the worst
        status among the requested targets' terminal records; a target
        without a terminal record counts as failed.
        """
        if self.failure is not None or not self.target_names:
            status = RunStatus.FAILED
        elif any(
            name not in self.rollouts or not self.rollouts[name].is_terminal
            for name in self.target_names
        ):
            status = RunStatus.FAILED
        else:
            status = _RUN_STATUS_FOR[self.worst_target_status]
        self.status = status
        self.finished_at = datetime.now(timezone.utc)
        return status

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    # ------------------------------------------------------------------
    # Structured result
    # ------------------------------------------------------------------

    def summary(self) -> dict[str, Any]:
        """JSON-ready result for callers deciding success or failure."""
        scan: dict[str, Any] | None = None
        if self.scan_verdict is not None:
            scan = {
                "verdict": self.scan_verdict.verdict.value,
                "threshold": self.scan_verdict.threshold.value,
                "severity_counts": self.scan_verdict.severity_counts(),
                "blocking": [
                    f.identifier for f in self.scan_verdict.blocking_findings
                ],
            }

        targets: dict[str, Any] = {}
        for name in self.target_names:
            record = self.rollouts.get(name)
            if record is None:
                targets[name] = {"status": None}
                continue
            targets[name] = {
                "status": record.status.value,
                "manifest_revision": record.manifest_revision,
                "rolled_back_to": record.rolled_back_to or None,
                "reused": record.reused,
                "error": record.error.model_dump(mode="json") if record.error else None,
                "rollback_error": (
                    record.rollback_error.model_dump(mode="json")
                    if record.rollback_error
                    else None
                ),
            }

        worst = self.worst_target_status
        return {
            "run_id": self.run_id,
            "trigger_revision": self.trigger_revision,
            "status": self.status.value,
            "failed_stage": self.failed_stage,
            "failure": self.failure.model_dump(mode="json") if self.failure else None,
            "artifact": (
                {"digest": self.artifact.digest, "image": self.artifact.pinned_ref}
                if self.artifact
                else None
            ),
            "scan": scan,
            "targets": targets,
            "worst_target_status": worst.value if worst else None,
        }
