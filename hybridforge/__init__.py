"""hybridforge: multi-target deployment orchestration for hybrid clouds.

Runs build -> scan -> deploy pipelines across plain Kubernetes and
OpenShift clusters:
  - content-addressed artifacts, pushed before deploy
  - severity-gated vulnerability scanning, cached by digest
  - parallel per-target rollouts with failure isolation
  - revision-based idempotence and automatic rollback
  - append-only, hash-chained audit ledger
"""

__version__ = "0.1.0"

from hybridforge.core.orchestrator import PipelineOrchestrator
from hybridforge.cli.app import app as cli

__all__ = ["PipelineOrchestrator", "cli", "__version__"]
