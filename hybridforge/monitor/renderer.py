"""Rich terminal renderer for pipeline runs, targets and rollout history.

Color scheme
------------
- green     : healthy / succeeded / pass
- yellow    : applying / rolled_back
- red       : failed / fail
- dim       : pending
"""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from hybridforge.core.target_registry import TargetRegistry
from hybridforge.models.ledger import LedgerEntry
from hybridforge.models.rollouts import RolloutStatus
from hybridforge.models.runs import PipelineRun, RunStatus

_STATUS_ICONS: dict[RolloutStatus, str] = {
    RolloutStatus.HEALTHY: "[green]HEALTHY[/green]",
    RolloutStatus.FAILED: "[bold red]FAILED[/bold red]",
    RolloutStatus.ROLLED_BACK: "[yellow]ROLLED BACK[/yellow]",
    RolloutStatus.APPLYING: "[yellow]APPLYING[/yellow]",
    RolloutStatus.PENDING: "[dim]PENDING[/dim]",
}

_RUN_STYLES: dict[RunStatus, str] = {
    RunStatus.SUCCEEDED: "green",
    RunStatus.ROLLED_BACK: "yellow",
    RunStatus.FAILED: "red",
    RunStatus.RUNNING: "yellow",
    RunStatus.PENDING: "dim",
}


def _short(revision: str) -> str:
    return revision.removeprefix("sha256:")[:12] if revision else "-"


class RunRenderer:
    """Renders hybridforge results as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance. A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Pipeline run
    # ------------------------------------------------------------------

    def render_run(self, run: PipelineRun) -> Panel:
        """Render a PipelineRun as a Panel with a per-target table."""
        table = Table(show_header=True, header_style="bold", expand=True)
        table.add_column("Target", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Revision")
        table.add_column("Detail")

        for name in run.target_names:
            record = run.rollouts.get(name)
            if record is None:
                table.add_row(name, "[dim]NOT STARTED[/dim]", "-", "")
                continue
            detail = ""
            if record.reused:
                detail = "revision already live"
            if record.error is not None:
                detail = f"{record.error.error_type}: {record.error.message}"
            if record.rolled_back_to:
                detail += f" -> restored {_short(record.rolled_back_to)}"
            if record.rollback_error is not None:
                detail += f" [red](rollback failed: {record.rollback_error.message})[/red]"
            table.add_row(name, _STATUS_ICONS[record.status], _short(record.manifest_revision), detail)

        lines: list[str] = [
            f"[bold]Run:[/bold] {run.run_id}",
            f"[bold]Revision:[/bold] {run.trigger_revision}",
        ]
        if run.artifact is not None:
            lines.append(f"[bold]Image:[/bold] {run.artifact.pinned_ref}")
        if run.scan_verdict is not None:
            counts = run.scan_verdict.severity_counts()
            verdict_style = "green" if run.scan_verdict.passed else "red"
            lines.append(
                f"[bold]Scan:[/bold] [{verdict_style}]{run.scan_verdict.verdict.value}[/{verdict_style}] "
                f"(critical={counts['critical']} high={counts['high']} "
                f"medium={counts['medium']} low={counts['low']}, "
                f"threshold={run.scan_verdict.threshold.value})"
            )
        if run.failure is not None:
            lines.append(
                f"[bold red]Failed at {run.failure.stage}[/bold red] "
                f"({run.failure.kind.value}): {run.failure.message}"
            )

        style = _RUN_STYLES[run.status]
        body = Table.grid(padding=(0, 0))
        body.add_row("\n".join(lines))
        body.add_row("")
        body.add_row(table)
        return Panel(
            body,
            title=f"[bold]hybridforge[/bold] [{style}]{run.status.value.upper()}[/{style}]",
            border_style=style,
        )

    def print_run(self, run: PipelineRun) -> None:
        self.console.print(self.render_run(run))
        if run.failure is not None and run.failure.detail:
            self.console.print(Panel(run.failure.detail, title="Diagnostics", border_style="red"))

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    def print_targets(self, registry: TargetRegistry) -> None:
        table = Table(title="Deployment Targets")
        table.add_column("Name", style="cyan")
        table.add_column("Kind")
        table.add_column("Exposure")
        table.add_column("Endpoint")
        table.add_column("Namespace")
        table.add_column("Replicas", justify="right")

        for name in registry.names:
            target = registry.resolve(name)
            table.add_row(
                target.name,
                target.cluster_kind.value,
                target.route_dialect.value,
                target.endpoint,
                target.manifest.namespace,
                str(target.manifest.replicas),
            )
        self.console.print(table)

    # ------------------------------------------------------------------
    # Ledger history
    # ------------------------------------------------------------------

    def print_history(self, title: str, entries: list[LedgerEntry]) -> None:
        table = Table(title=title)
        table.add_column("Time (UTC)", style="dim")
        table.add_column("Run")
        table.add_column("Stage", style="cyan")
        table.add_column("Transition")
        table.add_column("Revision")
        table.add_column("Note")

        for entry in entries:
            table.add_row(
                entry.timestamp_utc.strftime("%Y-%m-%d %H:%M:%S"),
                entry.run_id,
                entry.stage_id,
                entry.state_transition,
                _short(entry.manifest_revision),
                str(entry.detail.get("note", "")),
            )
        self.console.print(table)

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[bold green]Ledger chain for {run_id} is intact.[/bold green]")
        else:
            self.console.print(f"[bold red]Ledger chain for {run_id} is BROKEN.[/bold red]")
