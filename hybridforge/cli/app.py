"""Main Typer application: registers all CLI commands.

Entry point: ``hybridforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer

from hybridforge.cli.commands.demo import demo_cmd
from hybridforge.cli.commands.history import history_cmd, rollback_cmd, verify_cmd
from hybridforge.cli.commands.run import run_cmd
from hybridforge.cli.commands.targets import targets_cmd
from hybridforge.config import config as settings

app = typer.Typer(
    name="hybridforge",
    help="hybridforge: build, scan and deploy to Kubernetes and OpenShift targets.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="run", help="Build, scan and deploy a source revision.")(run_cmd)
app.command(name="demo", help="Run the pipeline against simulated clusters.")(demo_cmd)
app.command(name="targets", help="List configured deployment targets.")(targets_cmd)
app.command(name="history", help="Show rollout history or list runs.")(history_cmd)
app.command(name="verify", help="Verify a run's ledger hash chain.")(verify_cmd)
app.command(name="rollback", help="Restore a target's previous healthy revision.")(rollback_cmd)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Logging level (default from HYBRIDFORGE_LOG_LEVEL).",
    ),
) -> None:
    """Configure logging for every command."""
    level = (log_level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
