"""Terminal rendering of runs, targets and ledger history."""

from hybridforge.monitor.renderer import RunRenderer

__all__ = ["RunRenderer"]
