"""Shared test fixtures for hybridforge."""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from hybridforge.core.builder import StaticBuildTool
from hybridforge.core.cluster import InMemoryCluster, in_memory_factory
from hybridforge.core.manifest_store import ManifestStore
from hybridforge.core.orchestrator import PipelineOrchestrator
from hybridforge.core.rollout import RolloutCoordinator
from hybridforge.core.run_ledger import RunLedger
from hybridforge.core.scan_gate import StaticScanTool
from hybridforge.core.secrets import StaticSecretStore
from hybridforge.core.target_registry import TargetRegistry
from hybridforge.models.artifacts import Artifact
from hybridforge.models.config import PipelineConfig
from hybridforge.models.targets import ClusterKind, DeploymentTarget, ManifestSpec


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []
        self._lock = threading.Lock()

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Targets and artifacts
# ---------------------------------------------------------------------------


@pytest.fixture
def make_target() -> Callable[..., DeploymentTarget]:
    """Factory fixture: build a DeploymentTarget with sensible defaults."""

    def _factory(
        name: str = "staging",
        cluster_kind: ClusterKind = ClusterKind.KUBERNETES,
        replicas: int = 2,
        **overrides: Any,
    ) -> DeploymentTarget:
        defaults: dict[str, Any] = {
            "name": name,
            "cluster_kind": cluster_kind,
            "endpoint": f"https://api.{name}.test:6443",
            "credential_ref": f"{name}-deployer",
            "manifest": ManifestSpec(
                app_name="hello-hybrid",
                namespace=f"hello-{name}",
                replicas=replicas,
                host=f"hello.{name}.test",
            ),
        }
        defaults.update(overrides)
        return DeploymentTarget(**defaults)

    return _factory


@pytest.fixture
def staging(make_target: Callable[..., DeploymentTarget]) -> DeploymentTarget:
    return make_target("staging", ClusterKind.KUBERNETES, replicas=2)


@pytest.fixture
def production(make_target: Callable[..., DeploymentTarget]) -> DeploymentTarget:
    return make_target("production", ClusterKind.OPENSHIFT, replicas=3)


@pytest.fixture
def registry(staging: DeploymentTarget, production: DeploymentTarget) -> TargetRegistry:
    """Registry with a Kubernetes staging and an OpenShift production target."""
    return TargetRegistry([staging, production])


@pytest.fixture
def make_artifact() -> Callable[..., Artifact]:
    """Factory fixture: an Artifact whose digest is ``sha256:`` + *fill* x 64."""

    def _factory(fill: str = "a", source_revision: str = "abc123") -> Artifact:
        return Artifact(
            digest=f"sha256:{fill * 64}",
            source_revision=source_revision,
            image_ref="registry.test/hello-hybrid",
        )

    return _factory


@pytest.fixture
def artifact(make_artifact: Callable[..., Artifact]) -> Artifact:
    return make_artifact("a")


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture
def ledger(tmp_path: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_path / "ledger.db")


@pytest.fixture
def manifest_store(tmp_path: Path) -> ManifestStore:
    """Provide a fresh ManifestStore in a temp directory."""
    return ManifestStore(tmp_path / "manifests")


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def secret_store() -> StaticSecretStore:
    return StaticSecretStore({
        "staging-deployer": "staging-token",
        "production-deployer": "production-token",
    })


@pytest.fixture
def clusters() -> dict[str, InMemoryCluster]:
    """One simulated cluster per registry target, healthy on first poll."""
    return {"staging": InMemoryCluster(), "production": InMemoryCluster()}


@pytest.fixture
def coordinator(
    clusters: dict[str, InMemoryCluster],
    secret_store: StaticSecretStore,
    manifest_store: ManifestStore,
    ledger: RunLedger,
    clock: FakeClock,
) -> RolloutCoordinator:
    """RolloutCoordinator wired to in-memory clusters and a fake clock."""
    return RolloutCoordinator(
        in_memory_factory(clusters),
        secret_store,
        manifest_store,
        ledger=ledger,
        health_timeout=10.0,
        poll_interval=1.0,
        apply_attempts=3,
        backoff_base=0.5,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def make_orchestrator(
    tmp_path: Path,
    registry: TargetRegistry,
    clusters: dict[str, InMemoryCluster],
    secret_store: StaticSecretStore,
    clock: FakeClock,
) -> Callable[..., PipelineOrchestrator]:
    """Factory fixture: a PipelineOrchestrator over simulated collaborators.

    Keyword arguments other than the collaborators override PipelineConfig
    fields.
    """

    def _factory(
        build_tool: StaticBuildTool | None = None,
        scan_tool: StaticScanTool | None = None,
        cluster_factory: Any = None,
        **config_overrides: Any,
    ) -> PipelineOrchestrator:
        settings: dict[str, Any] = {
            "ledger_db_path": tmp_path / "ledger.db",
            "manifest_store_path": tmp_path / "manifests",
            "image_repository": "registry.test/hello-hybrid",
            "health_timeout_seconds": 10.0,
            "health_poll_interval_seconds": 1.0,
            "backoff_base_seconds": 0.5,
        }
        settings.update(config_overrides)
        return PipelineOrchestrator(
            registry,
            build_tool=build_tool or StaticBuildTool(),
            scan_tool=scan_tool or StaticScanTool(),
            cluster_factory=cluster_factory or in_memory_factory(clusters),
            secret_store=secret_store,
            config=PipelineConfig(**settings),
            clock=clock,
            sleep=clock.sleep,
        )

    return _factory
