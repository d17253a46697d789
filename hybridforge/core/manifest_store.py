"""Content-addressed, immutable store for rendered manifest sets.

Storage layout: {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.json
A manifest revision is the store address of its canonical JSON, so the
coordinator can re-apply any recorded revision during a rollback.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any

from hybridforge.core.hasher import canonical_json_bytes, sha256_hex


class ManifestIntegrityError(RuntimeError):
    """Raised when stored manifests do not match their revision."""


class ManifestStore:
    """SHA-256 keyed, immutable manifest store.

    Storing the same manifest set twice is a no-op. There is no update or
    delete.

    Parameters
    ----------
    base_path:
        Root directory for manifest storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _extract_digest(revision: str) -> str:
        return revision.removeprefix("sha256:")

    def _path(self, digest: str) -> Path:
        return self._base / digest[:2] / digest[2:4] / f"{digest}.json"

    def store(self, manifests: list[dict[str, Any]]) -> str:
        """Store a manifest set and return its revision ("sha256:<hex>")."""
        data = canonical_json_bytes(manifests)
        digest = sha256_hex(data)
        path = self._path(digest)

        if path.exists():
            if not self.verify(digest):
                raise ManifestIntegrityError(
                    f"Existing manifests at {digest} failed integrity check"
                )
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(f"{digest}.{uuid.uuid4().hex}.tmp")
            tmp.write_bytes(data)
            tmp.replace(path)

        return f"sha256:{digest}"

    def load(self, revision: str) -> list[dict[str, Any]]:
        """Return the manifest set recorded under *revision*."""
        digest = self._extract_digest(revision)
        path = self._path(digest)
        if not path.exists():
            raise FileNotFoundError(f"Manifest revision not found: {revision}")
        data = path.read_bytes()
        if sha256_hex(data) != digest:
            raise ManifestIntegrityError(f"Manifest revision {revision} is corrupted")
        return json.loads(data)

    def verify(self, revision: str) -> bool:
        """Re-hash stored bytes and compare against the revision."""
        digest = self._extract_digest(revision)
        path = self._path(digest)
        if not path.exists():
            return False
        return sha256_hex(path.read_bytes()) == digest
