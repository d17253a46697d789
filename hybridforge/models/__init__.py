"""hybridforge data models: all Pydantic v2."""

from hybridforge.models.artifacts import Artifact
from hybridforge.models.config import PipelineConfig
from hybridforge.models.ledger import LedgerEntry
from hybridforge.models.rollouts import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    ErrorKind,
    RolloutRecord,
    RolloutStatus,
    RolloutTransition,
    StageError,
)
from hybridforge.models.runs import PipelineRun, RunStatus
from hybridforge.models.scans import Finding, ScanVerdict, Severity, VerdictKind
from hybridforge.models.targets import (
    ClusterKind,
    DeploymentTarget,
    ManifestSpec,
    RouteDialect,
)

__all__ = [
    # artifacts
    "Artifact",
    # scans
    "Severity",
    "VerdictKind",
    "Finding",
    "ScanVerdict",
    # targets
    "ClusterKind",
    "RouteDialect",
    "ManifestSpec",
    "DeploymentTarget",
    # rollouts
    "RolloutStatus",
    "RolloutTransition",
    "RolloutRecord",
    "ErrorKind",
    "StageError",
    "VALID_TRANSITIONS",
    "TERMINAL_STATUSES",
    # runs
    "PipelineRun",
    "RunStatus",
    # ledger
    "LedgerEntry",
    # config
    "PipelineConfig",
]
