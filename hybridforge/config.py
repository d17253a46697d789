"""Process configuration: env-driven via pydantic-settings.

Reads from a .env file and HYBRIDFORGE_* environment variables. The
per-orchestrator ``PipelineConfig`` is derived from this with
``PipelineConfig.from_settings()``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hybridforge.models.scans import Severity


class ProdConfig(BaseSettings):
    """Process-wide settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export HYBRIDFORGE_LOG_LEVEL=DEBUG
        export HYBRIDFORGE_SEVERITY_THRESHOLD=high
        export HYBRIDFORGE_HEALTH_TIMEOUT_SECONDS=600

    Or via .env file::

        HYBRIDFORGE_TARGETS_FILE=deploy/targets.toml
        HYBRIDFORGE_IMAGE_REPOSITORY=quay.io/acme/hello-hybrid
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="HYBRIDFORGE_",
        env_file_encoding="utf-8",
    )

    environment: str = "development"
    log_level: str = "INFO"

    # Storage paths
    ledger_path: Path = Path(".hybridforge/ledger.db")
    manifest_store_path: Path = Path(".hybridforge/manifests")
    targets_file: Path = Path("targets.toml")

    # Build
    build_context: Path = Path(".")
    image_repository: str = "registry.local/hello-hybrid"
    build_timeout_seconds: float = 900.0

    # Scan policy
    severity_threshold: Severity = Severity.CRITICAL
    scan_timeout_seconds: float = 300.0
    scan_attempts: int = 3

    # Rollout
    health_timeout_seconds: float = 300.0
    health_poll_interval_seconds: float = 5.0
    apply_attempts: int = 3
    backoff_base_seconds: float = 1.0
    rollback_on_failure: bool = True
    max_parallel_targets: int = 4

    @field_validator("severity_threshold", mode="before")
    @classmethod
    def _lowercase_severity(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


# Module-level singleton; import as `from hybridforge.config import config`
config = ProdConfig()
