"""``hybridforge run REVISION -t staging -t production``: run the pipeline.

Builds with docker, scans with trivy, and deploys with kubectl/oc using
credentials from HYBRIDFORGE_SECRET_* environment variables.

Exit codes: 0 when every target is healthy, 2 when the worst target
was rolled back, 1 on failure.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console

from hybridforge.config import config as settings
from hybridforge.core.builder import DockerBuildTool
from hybridforge.core.cluster import kubectl_factory
from hybridforge.core.orchestrator import PipelineOrchestrator
from hybridforge.core.scan_gate import TrivyScanTool
from hybridforge.core.secrets import EnvSecretStore
from hybridforge.core.target_registry import TargetConfigError, TargetRegistry
from hybridforge.models.config import PipelineConfig
from hybridforge.models.runs import PipelineRun, RunStatus
from hybridforge.monitor.renderer import RunRenderer

console = Console()

EXIT_CODES: dict[RunStatus, int] = {
    RunStatus.SUCCEEDED: 0,
    RunStatus.ROLLED_BACK: 2,
    RunStatus.FAILED: 1,
}


def load_registry(targets_file: Path | None) -> TargetRegistry:
    """Load the target registry or exit with a readable error."""
    path = targets_file or settings.targets_file
    try:
        return TargetRegistry.from_file(path)
    except TargetConfigError as exc:
        console.print(f"[bold red]Target configuration error:[/bold red] {exc}")
        raise typer.Exit(code=1)


def report(run: PipelineRun, as_json: bool) -> None:
    """Print a run result and exit with its status code."""
    if as_json:
        typer.echo(json.dumps(run.summary(), indent=2, sort_keys=True))
    else:
        RunRenderer(console=console).print_run(run)
    raise typer.Exit(code=EXIT_CODES.get(run.status, 1))


def run_cmd(
    revision: str = typer.Argument(
        ...,
        help="Source revision to build (e.g. a git commit SHA).",
    ),
    targets: list[str] = typer.Option(
        ...,
        "--target",
        "-t",
        help="Target to deploy to. Repeat for several targets.",
    ),
    targets_file: Path = typer.Option(
        None,
        "--targets-file",
        "-f",
        help="TOML file describing deployment targets.",
    ),
    context: Path = typer.Option(
        None,
        "--context",
        help="Build context directory (default from HYBRIDFORGE_BUILD_CONTEXT).",
    ),
    repository: str = typer.Option(
        None,
        "--repository",
        "-r",
        help="Image repository to push to.",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the structured result as JSON.",
    ),
) -> None:
    """Build, scan and deploy REVISION to the requested targets."""
    registry = load_registry(targets_file)

    pipeline_config = PipelineConfig.from_settings(settings)
    overrides: dict[str, object] = {}
    if context is not None:
        overrides["build_context"] = context
    if repository:
        overrides["image_repository"] = repository
    if overrides:
        pipeline_config = pipeline_config.model_copy(update=overrides)

    orchestrator = PipelineOrchestrator(
        registry,
        build_tool=DockerBuildTool(timeout=pipeline_config.build_timeout_seconds),
        scan_tool=TrivyScanTool(timeout=pipeline_config.scan_timeout_seconds),
        cluster_factory=kubectl_factory(),
        secret_store=EnvSecretStore(),
        config=pipeline_config,
    )
    run = orchestrator.run(revision, targets)
    report(run, as_json)
