"""Append-only, hash-chained Run Ledger backed by SQLite.

Every pipeline stage and rollout transition is appended here. The ledger
is the audit trail for runs and the source the Rollout Coordinator
rebuilds per-target revision history from.

Design:
- Append-only: only `append()` writes; no update, no delete.
- Hash-chained per run: each entry includes SHA-256 of the previous entry.
- Appends are serialized with a lock, so concurrent target branches of
  the same run keep a linear chain.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from hybridforge.core.hasher import compute_entry_hash
from hybridforge.models.ledger import LedgerEntry


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    run_id                TEXT NOT NULL,
    stage_id              TEXT NOT NULL,
    state_transition      TEXT NOT NULL,
    target_name           TEXT NOT NULL DEFAULT '',
    timestamp_utc         TEXT NOT NULL,
    artifact_digest       TEXT NOT NULL DEFAULT '',
    manifest_revision     TEXT NOT NULL DEFAULT '',
    detail_json           TEXT NOT NULL DEFAULT '{}',
    schema_version        TEXT NOT NULL,
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_run_id ON run_ledger(run_id, id);
"""

_CREATE_IDX_TARGET = """
CREATE INDEX IF NOT EXISTS idx_target ON run_ledger(target_name, id);
"""

_COLUMNS = (
    "entry_id, run_id, stage_id, state_transition, target_name, timestamp_utc, "
    "artifact_digest, manifest_revision, detail_json, schema_version, "
    "previous_entry_hash, entry_hash"
)
_FIELD_NAMES = tuple(name.strip() for name in _COLUMNS.split(","))


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained Run Ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_RUN)
            conn.execute(_CREATE_IDX_TARGET)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Append an entry, computing its hash chain link.

        Returns the entry with `previous_entry_hash` and `entry_hash` set.
        """
        with self._write_lock:
            previous_hash = self._get_latest_hash(entry.run_id)

            entry_dict = entry.model_dump(mode="json")
            entry_dict["previous_entry_hash"] = previous_hash
            entry_dict["entry_hash"] = ""

            sealed = entry.model_copy(
                update={
                    "previous_entry_hash": previous_hash,
                    "entry_hash": compute_entry_hash(entry_dict),
                }
            )
            self._insert(sealed)
        return sealed

    def _insert(self, entry: LedgerEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO run_ledger ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.entry_id,
                    entry.run_id,
                    entry.stage_id,
                    entry.state_transition,
                    entry.target_name,
                    entry.timestamp_utc.isoformat()
                    if isinstance(entry.timestamp_utc, datetime)
                    else entry.timestamp_utc,
                    entry.artifact_digest,
                    entry.manifest_revision,
                    json.dumps(entry.detail, sort_keys=True),
                    entry.schema_version,
                    entry.previous_entry_hash,
                    entry.entry_hash,
                ),
            )
            conn.commit()

    def _get_latest_hash(self, run_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _select(self, where: str, params: tuple) -> list[LedgerEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM run_ledger WHERE {where} ORDER BY id ASC",
                params,
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Entries of one run in append order."""
        return self._select("run_id = ?", (run_id,))

    def get_target_entries(self, target_name: str) -> list[LedgerEntry]:
        """Rollout entries for one target across every run, oldest first."""
        return self._select("target_name = ?", (target_name,))

    def get_all_run_ids(self) -> list[str]:
        """Distinct run IDs, most recently active first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id FROM run_ledger GROUP BY run_id ORDER BY MAX(id) DESC"
            ).fetchall()
        return [run_id for (run_id,) in rows]

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Re-derive every seal and link of *run_id*'s chain.

        Returns True for an intact (or empty) chain and raises
        ``LedgerIntegrityError`` at the first broken entry.
        """
        expected_previous = ""
        for position, entry in enumerate(self.get_run_entries(run_id)):
            label = f"{entry.stage_id} {entry.state_transition} (#{position}, {entry.entry_id})"
            if entry.previous_entry_hash != expected_previous:
                raise LedgerIntegrityError(
                    f"Chain broken at {label}: links to {entry.previous_entry_hash[:16]!r}, "
                    f"expected {expected_previous[:16]!r}"
                )
            if compute_entry_hash(entry.model_dump(mode="json")) != entry.entry_hash:
                raise LedgerIntegrityError(f"Tampered entry {label}: seal does not match content")
            expected_previous = entry.entry_hash
        return True

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        fields = dict(zip(_FIELD_NAMES, row))
        fields["detail"] = json.loads(fields.pop("detail_json"))
        return LedgerEntry(**fields)
