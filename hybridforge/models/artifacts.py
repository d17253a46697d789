"""Content-addressed build artifact model (immutable once built)."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class Artifact(BaseModel):
    """A built, pushed container image identified by its content digest.

    Two artifacts with the same digest are interchangeable: equality and
    hashing only consider the digest.
    """

    model_config = ConfigDict(frozen=True)

    digest: str  # "sha256:<hex>"
    source_revision: str
    image_ref: str  # registry/repository, no tag
    built_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def pinned_ref(self) -> str:
        """Image reference pinned by digest, e.g. ``repo@sha256:...``."""
        return f"{self.image_ref}@{self.digest}"

    @property
    def short_digest(self) -> str:
        return self.digest.removeprefix("sha256:")[:12]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Artifact):
            return NotImplemented
        return self.digest == other.digest

    def __hash__(self) -> int:
        return hash(self.digest)
