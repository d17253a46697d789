"""Error taxonomy for pipeline stages.

Every error knows the stage it belongs to and whether it is a policy,
infrastructure or configuration failure, so the final PipelineRun can
report which stage failed and why. Prefix-stage errors (config, build,
scan) abort the run; branch errors (deploy, rollback) stay in their
branch.
"""

from __future__ import annotations

from typing import ClassVar

from hybridforge.models.rollouts import ErrorKind, StageError


class HybridforgeError(RuntimeError):
    """Base exception for hybridforge failures."""

    stage: ClassVar[str] = "pipeline"
    kind: ClassVar[ErrorKind] = ErrorKind.INFRASTRUCTURE

    def __init__(self, message: str, *, diagnostics: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.diagnostics = diagnostics

    def to_stage_error(self) -> StageError:
        return StageError(
            stage=self.stage,
            kind=self.kind,
            error_type=type(self).__name__,
            message=self.message,
            detail=self.diagnostics,
        )


# ---------------------------------------------------------------------------
# Prefix stages: abort the whole run
# ---------------------------------------------------------------------------


class UnknownTarget(HybridforgeError):
    """A requested target name is not registered. Fails before any work."""

    stage = "config"
    kind = ErrorKind.CONFIGURATION

    def __init__(self, names: list[str], known: list[str] | None = None) -> None:
        self.names = list(names)
        self.known = list(known or [])
        known_str = ", ".join(self.known) if self.known else "none"
        super().__init__(
            f"Unknown deployment target(s): {', '.join(self.names)} "
            f"(registered: {known_str})"
        )


class BuildFailure(HybridforgeError):
    """The external build tool failed. Diagnostics hold its output."""

    stage = "build"


class ScanUnavailable(HybridforgeError):
    """The scan service stayed unavailable after all retry attempts."""

    stage = "scan"


class ScanPolicyViolation(HybridforgeError):
    """The artifact has findings at or above the severity threshold."""

    stage = "scan"
    kind = ErrorKind.POLICY


# ---------------------------------------------------------------------------
# Branch stages: contained to one target
# ---------------------------------------------------------------------------


class ApplyError(HybridforgeError):
    """Applying manifests to a target's cluster failed."""

    stage = "deploy"


class HealthTimeout(HybridforgeError):
    """The workload did not become ready within the health timeout."""

    stage = "deploy"


class CredentialError(HybridforgeError):
    """A target's credential could not be obtained from the secret store."""

    stage = "deploy"
    kind = ErrorKind.CONFIGURATION


class RollbackFailure(HybridforgeError):
    """Restoring the previous healthy revision failed. Never escalated."""

    stage = "rollback"


# ---------------------------------------------------------------------------
# Transient markers: raised by collaborators, retried by callers
# ---------------------------------------------------------------------------


class TransientError(RuntimeError):
    """An infrastructure error worth retrying."""


class TransientScanError(TransientError):
    """The scan service is temporarily unavailable."""


class TransientApplyError(TransientError):
    """The cluster API rejected a call for a retryable reason."""
