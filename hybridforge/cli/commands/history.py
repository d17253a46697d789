"""Ledger inspection commands: ``history``, ``verify`` and ``rollback``."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from hybridforge.config import config as settings
from hybridforge.core.cluster import kubectl_factory
from hybridforge.core.errors import HybridforgeError
from hybridforge.core.manifest_store import ManifestStore
from hybridforge.core.rollout import RolloutCoordinator
from hybridforge.core.run_ledger import LedgerIntegrityError, RunLedger
from hybridforge.core.secrets import EnvSecretStore
from hybridforge.cli.commands.run import load_registry
from hybridforge.monitor.renderer import RunRenderer

console = Console()


def _open_ledger(ledger_db: Path | None) -> RunLedger:
    db_path = ledger_db or settings.ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        raise typer.Exit(code=1)
    return RunLedger(db_path)


def history_cmd(
    target: str = typer.Argument(
        None,
        help="Target to show rollout history for. Omit to list runs.",
    ),
    ledger_db: Path = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """Show rollout history for a target, or list recorded runs."""
    ledger = _open_ledger(ledger_db)
    renderer = RunRenderer(console=console)

    if target is None:
        run_ids = ledger.get_all_run_ids()
        if not run_ids:
            console.print("[dim]No runs recorded.[/dim]")
            return
        for run_id in run_ids:
            console.print(run_id)
        return

    entries = ledger.get_target_entries(target)
    if not entries:
        console.print(f"[dim]No rollouts recorded for {target}.[/dim]")
        return
    renderer.print_history(f"Rollout history: {target}", entries)


def verify_cmd(
    run_id: str = typer.Argument(..., help="Run ID whose ledger chain to verify."),
    ledger_db: Path = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """Verify the hash chain integrity of a run's ledger entries."""
    ledger = _open_ledger(ledger_db)
    renderer = RunRenderer(console=console)
    try:
        valid = ledger.verify_chain(run_id)
    except LedgerIntegrityError as exc:
        renderer.print_chain_verification(run_id, False)
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    renderer.print_chain_verification(run_id, valid)


def rollback_cmd(
    target: str = typer.Argument(..., help="Target to roll back."),
    targets_file: Path = typer.Option(
        None,
        "--targets-file",
        "-f",
        help="TOML file describing deployment targets.",
    ),
    ledger_db: Path = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """Re-apply the previous healthy revision of TARGET."""
    registry = load_registry(targets_file)
    ledger = _open_ledger(ledger_db)

    coordinator = RolloutCoordinator(
        kubectl_factory(),
        EnvSecretStore(),
        ManifestStore(settings.manifest_store_path),
        ledger=ledger,
        health_timeout=settings.health_timeout_seconds,
        poll_interval=settings.health_poll_interval_seconds,
        apply_attempts=settings.apply_attempts,
        backoff_base=settings.backoff_base_seconds,
    )
    try:
        record = coordinator.rollback(registry.resolve(target))
    except HybridforgeError as exc:
        console.print(f"[bold red]Rollback failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    console.print(
        f"[bold green]{target} restored to {record.manifest_revision}[/bold green]"
    )
