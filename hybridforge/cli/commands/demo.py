"""``hybridforge demo``: run the pipeline against simulated collaborators.

Deploys a sample app to a Kubernetes staging cluster and an OpenShift
production cluster, both in memory. Flags inject the failures the
pipeline is designed to contain.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from hybridforge.core.builder import StaticBuildTool
from hybridforge.core.cluster import InMemoryCluster, in_memory_factory
from hybridforge.core.orchestrator import PipelineOrchestrator
from hybridforge.core.scan_gate import StaticScanTool
from hybridforge.core.secrets import StaticSecretStore
from hybridforge.core.target_registry import TargetRegistry
from hybridforge.cli.commands.run import report
from hybridforge.models.config import PipelineConfig
from hybridforge.models.scans import Finding, Severity
from hybridforge.models.targets import ClusterKind, DeploymentTarget, ManifestSpec

console = Console()

DEMO_TARGETS: list[DeploymentTarget] = [
    DeploymentTarget(
        name="staging",
        cluster_kind=ClusterKind.KUBERNETES,
        endpoint="https://api.staging.demo.local:6443",
        credential_ref="staging-deployer",
        manifest=ManifestSpec(
            app_name="hello-hybrid",
            namespace="hello-staging",
            replicas=1,
            host="hello.staging.demo.local",
        ),
    ),
    DeploymentTarget(
        name="production",
        cluster_kind=ClusterKind.OPENSHIFT,
        endpoint="https://api.prod.demo.local:6443",
        credential_ref="production-deployer",
        manifest=ManifestSpec(
            app_name="hello-hybrid",
            namespace="hello-prod",
            replicas=3,
            host="hello.apps.prod.demo.local",
        ),
    ),
]


def demo_cmd(
    revision: str = typer.Option(
        "3f2c9e1a7b4d",
        "--revision",
        help="Source revision to pretend to build.",
    ),
    fail_target: str = typer.Option(
        None,
        "--fail-target",
        help="Make every apply to this target fail.",
    ),
    critical: bool = typer.Option(
        False,
        "--critical",
        help="Report a critical finding so the scan gate fails.",
    ),
    flaky_scan: bool = typer.Option(
        False,
        "--flaky-scan",
        help="Make the first scan attempt fail transiently.",
    ),
    ledger_db: str = typer.Option(
        ".hybridforge/demo-ledger.db",
        "--ledger",
        help="Path to the ledger SQLite database (uses demo-specific default).",
    ),
    manifest_dir: str = typer.Option(
        ".hybridforge/demo-manifests",
        "--manifests",
        help="Path to the manifest store directory.",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the structured result as JSON.",
    ),
) -> None:
    """Run a complete demo pipeline with simulated clusters."""
    registry = TargetRegistry(DEMO_TARGETS)
    clusters = {
        target.name: InMemoryCluster(
            ready_after_polls=1,
            transient_apply_failures=-1 if target.name == fail_target else 0,
        )
        for target in DEMO_TARGETS
    }

    findings = [Finding(severity=Severity.MEDIUM, identifier="CVE-2023-44487", package="nghttp2")]
    if critical:
        findings.append(
            Finding(severity=Severity.CRITICAL, identifier="CVE-2021-44228", package="log4j-core")
        )

    config = PipelineConfig(
        project_name="hybridforge-demo",
        ledger_db_path=Path(ledger_db),
        manifest_store_path=Path(manifest_dir),
        image_repository="registry.demo.local/hello-hybrid",
        health_timeout_seconds=2.0,
        health_poll_interval_seconds=0.05,
        backoff_base_seconds=0.05,
    )

    if not as_json:
        console.print()
        console.print(
            Panel(
                "[bold]hybridforge demo pipeline[/bold]\n\n"
                "build -> scan -> { staging (Kubernetes), production (OpenShift) }\n"
                "All collaborators are simulated in memory.",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    orchestrator = PipelineOrchestrator(
        registry,
        build_tool=StaticBuildTool(),
        scan_tool=StaticScanTool(default=findings, transient_failures=1 if flaky_scan else 0),
        cluster_factory=in_memory_factory(clusters),
        secret_store=StaticSecretStore({
            "staging-deployer": "demo-staging-token",
            "production-deployer": "demo-production-token",
        }),
        config=config,
    )
    run = orchestrator.run(revision, registry.names)
    report(run, as_json)
