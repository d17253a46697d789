"""Pipeline configuration model."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from hybridforge.models.scans import Severity

if TYPE_CHECKING:
    from hybridforge.config import ProdConfig


class PipelineConfig(BaseModel):
    """Per-orchestrator configuration. Timeouts are independent per operation."""

    model_config = ConfigDict(frozen=True)

    project_name: str = "hybridforge"
    ledger_db_path: Path = Path(".hybridforge/ledger.db")
    manifest_store_path: Path = Path(".hybridforge/manifests")
    build_context: Path = Path(".")
    image_repository: str = "registry.local/hello-hybrid"

    severity_threshold: Severity = Severity.CRITICAL

    build_timeout_seconds: float = Field(default=900.0, gt=0)
    scan_timeout_seconds: float = Field(default=300.0, gt=0)
    health_timeout_seconds: float = Field(default=300.0, ge=0)
    health_poll_interval_seconds: float = Field(default=5.0, gt=0)

    scan_attempts: int = Field(default=3, ge=1)
    apply_attempts: int = Field(default=3, ge=1)
    backoff_base_seconds: float = Field(default=1.0, ge=0)

    rollback_on_failure: bool = True
    max_parallel_targets: int = Field(default=4, ge=1)

    @classmethod
    def from_settings(cls, settings: ProdConfig) -> PipelineConfig:
        """Build a PipelineConfig from environment-driven settings."""
        return cls(
            ledger_db_path=settings.ledger_path,
            manifest_store_path=settings.manifest_store_path,
            build_context=settings.build_context,
            image_repository=settings.image_repository,
            severity_threshold=settings.severity_threshold,
            build_timeout_seconds=settings.build_timeout_seconds,
            scan_timeout_seconds=settings.scan_timeout_seconds,
            health_timeout_seconds=settings.health_timeout_seconds,
            health_poll_interval_seconds=settings.health_poll_interval_seconds,
            scan_attempts=settings.scan_attempts,
            apply_attempts=settings.apply_attempts,
            backoff_base_seconds=settings.backoff_base_seconds,
            rollback_on_failure=settings.rollback_on_failure,
            max_parallel_targets=settings.max_parallel_targets,
        )
