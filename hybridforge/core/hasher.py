"""Hashing for manifest revisions, build digests and ledger seals.

Everything hashed here goes through one canonical JSON encoding, so a
manifest set rendered twice from the same inputs always hashes to the
same revision.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

# sorted keys, compact separators, ASCII only
_CANONICAL_OPTIONS: dict[str, Any] = {
    "sort_keys": True,
    "separators": (",", ":"),
    "ensure_ascii": True,
}


def canonical_json_bytes(obj: Any) -> bytes:
    """UTF-8 bytes of *obj* in canonical JSON form."""
    return json.dumps(obj, **_CANONICAL_OPTIONS).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """Seal for a ledger entry: the hash of every field but ``entry_hash``."""
    unsealed = dict(entry_dict)
    unsealed.pop("entry_hash", None)
    return sha256_hex(canonical_json_bytes(unsealed))
