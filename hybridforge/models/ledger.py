"""Audit ledger entry model (append-only, hash-chained).

One entry per state transition: pipeline stages (``build``, ``scan``)
and per-target rollouts (``deploy:<target>``). The rollout history a
coordinator rebuilds on startup is a projection of these entries.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single entry in the append-only Run Ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    stage_id: str  # "pipeline", "build", "scan", "deploy:<target>"
    state_transition: str  # "from->to", e.g. "applying->healthy"
    target_name: str = ""
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    artifact_digest: str = ""
    manifest_revision: str = ""
    detail: dict[str, Any] = {}
    schema_version: str = "2026-10"
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry

    @property
    def to_state(self) -> str:
        return self.state_transition.split("->", 1)[-1]
