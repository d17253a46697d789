"""Rollout state machine models: per-target deploy lifecycle."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RolloutStatus(str, Enum):
    """Strict state model for one target's rollout within a run."""

    PENDING = "pending"
    APPLYING = "applying"
    HEALTHY = "healthy"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


# Valid state transitions, enforced by RolloutCoordinator.
# HEALTHY and ROLLED_BACK are terminal; FAILED is terminal unless a
# rollback succeeds.
VALID_TRANSITIONS: dict[RolloutStatus, set[RolloutStatus]] = {
    RolloutStatus.PENDING: {RolloutStatus.APPLYING, RolloutStatus.FAILED},
    RolloutStatus.APPLYING: {RolloutStatus.HEALTHY, RolloutStatus.FAILED},
    RolloutStatus.FAILED: {RolloutStatus.ROLLED_BACK},
    RolloutStatus.HEALTHY: set(),
    RolloutStatus.ROLLED_BACK: set(),
}

TERMINAL_STATUSES: frozenset[RolloutStatus] = frozenset(
    {RolloutStatus.HEALTHY, RolloutStatus.FAILED, RolloutStatus.ROLLED_BACK}
)

# Higher is worse. Used to pick the worst outcome across targets.
STATUS_SEVERITY: dict[RolloutStatus, int] = {
    RolloutStatus.HEALTHY: 0,
    RolloutStatus.PENDING: 1,
    RolloutStatus.APPLYING: 1,
    RolloutStatus.ROLLED_BACK: 2,
    RolloutStatus.FAILED: 3,
}


class ErrorKind(str, Enum):
    """Distinguishes policy failures from infrastructure failures."""

    POLICY = "policy"
    INFRASTRUCTURE = "infrastructure"
    CONFIGURATION = "configuration"


class StageError(BaseModel):
    """Structured description of why a stage failed."""

    model_config = ConfigDict(frozen=True)

    stage: str  # "config", "build", "scan", "deploy", "rollback"
    kind: ErrorKind
    error_type: str  # exception class name, e.g. "HealthTimeout"
    message: str
    detail: str = ""  # tool diagnostics, if any


class RolloutTransition(BaseModel):
    """Records a single status change for audit."""

    model_config = ConfigDict(frozen=True)

    from_status: RolloutStatus
    to_status: RolloutStatus
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    note: str = ""


class RolloutRecord(BaseModel):
    """Lifecycle record for deploying one artifact to one target.

    Mutated only by the RolloutCoordinator branch that owns the target.
    The terminal status is retained for audit and rollback reference.
    """

    model_config = ConfigDict(validate_assignment=True)

    target_name: str
    artifact_digest: str
    manifest_revision: str = ""
    status: RolloutStatus = RolloutStatus.PENDING
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    transitions: list[RolloutTransition] = []
    error: StageError | None = None
    rollback_error: StageError | None = None
    rolled_back_to: str = ""  # revision restored by a rollback
    apply_attempts: int = 0
    reused: bool = False  # True when an identical healthy revision was already live

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
