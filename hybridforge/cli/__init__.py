"""hybridforge CLI: Typer-based command-line interface.

Provides the ``hybridforge`` command with subcommands for running the
pipeline, running a simulated demo, listing targets, inspecting the
ledger and rolling a target back.

All output uses Rich for formatted terminal display.
"""
