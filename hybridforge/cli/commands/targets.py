"""``hybridforge targets``: list configured deployment targets."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from hybridforge.cli.commands.run import load_registry
from hybridforge.monitor.renderer import RunRenderer

console = Console()


def targets_cmd(
    targets_file: Path = typer.Option(
        None,
        "--targets-file",
        "-f",
        help="TOML file describing deployment targets.",
    ),
) -> None:
    """List the targets in the registry and their capability flags."""
    registry = load_registry(targets_file)
    if not len(registry):
        console.print("[dim]No targets configured.[/dim]")
        return
    RunRenderer(console=console).print_targets(registry)
