"""Artifact Builder: thin wrapper over an external container build tool.

The builder never retries and has no fallback: any tool failure is a
``BuildFailure`` carrying the tool's diagnostic output, and it halts the
run.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

from hybridforge.core.errors import BuildFailure
from hybridforge.core.hasher import canonical_json_bytes, sha256_hex
from hybridforge.models.artifacts import Artifact

logger = logging.getLogger(__name__)


class BuildToolError(RuntimeError):
    """Raised by build tools; ``diagnostics`` holds the tool's output."""

    def __init__(self, message: str, diagnostics: str = "") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class BuildTool(Protocol):
    """Protocol for container build backends."""

    def build(self, source_revision: str, context: Path, repository: str) -> str:
        """Build an image and return a local tag for it."""
        ...

    def push(self, tag: str) -> str:
        """Push *tag* to its registry and return the content digest."""
        ...


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class DockerBuildTool:
    """Builds and pushes with the ``docker`` CLI.

    Parameters
    ----------
    timeout:
        Seconds allowed for each docker invocation.
    binary:
        Docker-compatible CLI to call (``docker``, ``podman``).
    """

    def __init__(self, timeout: float = 900.0, binary: str = "docker") -> None:
        self.timeout = timeout
        self.binary = binary

    def _run(self, args: list[str]) -> str:
        cmd = [self.binary, *args]
        logger.debug("running %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise BuildToolError(f"{self.binary} not found on PATH") from exc
        except subprocess.TimeoutExpired as exc:
            raise BuildToolError(
                f"{' '.join(cmd[:2])} timed out after {self.timeout}s",
                diagnostics=str(exc.stderr or ""),
            ) from exc

        if proc.returncode != 0:
            raise BuildToolError(
                f"{' '.join(cmd[:2])} exited with {proc.returncode}",
                diagnostics=(proc.stderr or proc.stdout).strip(),
            )
        return proc.stdout

    def build(self, source_revision: str, context: Path, repository: str) -> str:
        tag = f"{repository}:{source_revision[:12]}"
        self._run([
            "build",
            "--label", f"org.opencontainers.image.revision={source_revision}",
            "--tag", tag,
            str(context),
        ])
        return tag

    def push(self, tag: str) -> str:
        self._run(["push", tag])
        out = self._run([
            "image", "inspect", "--format", "{{index .RepoDigests 0}}", tag,
        ]).strip()
        if "@" not in out:
            raise BuildToolError(f"no registry digest reported for {tag}", diagnostics=out)
        return out.rsplit("@", 1)[1]


class StaticBuildTool:
    """Deterministic in-process build tool for demos and tests.

    The digest is derived from the source revision and repository, so
    rebuilding the same revision yields an interchangeable artifact.
    """

    def __init__(self, fail_with: str = "") -> None:
        self.fail_with = fail_with
        self.pushed: list[str] = []
        self.builds = 0

    def build(self, source_revision: str, context: Path, repository: str) -> str:
        self.builds += 1
        if self.fail_with:
            raise BuildToolError("build failed", diagnostics=self.fail_with)
        return f"{repository}:{source_revision[:12]}"

    def push(self, tag: str) -> str:
        self.pushed.append(tag)
        return f"sha256:{sha256_hex(canonical_json_bytes({'tag': tag}))}"


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class ArtifactBuilder:
    """Produces a pushed, content-addressed Artifact for a source revision.

    Parameters
    ----------
    tool:
        The build backend.
    context:
        Fixed build context directory.
    repository:
        Registry repository the image is pushed to.
    """

    def __init__(self, tool: BuildTool, context: Path, repository: str) -> None:
        self.tool = tool
        self.context = Path(context)
        self.repository = repository

    def build(self, source_revision: str) -> Artifact:
        """Build and push, returning the Artifact. Raises ``BuildFailure``."""
        if not source_revision.strip():
            raise BuildFailure("source revision must not be empty")

        logger.info("building %s at revision %s", self.repository, source_revision)
        try:
            tag = self.tool.build(source_revision, self.context, self.repository)
            digest = self.tool.push(tag)
        except BuildToolError as exc:
            logger.error("build of %s failed: %s", source_revision, exc)
            raise BuildFailure(
                f"Build of revision {source_revision} failed: {exc}",
                diagnostics=exc.diagnostics,
            ) from exc

        if not digest.startswith("sha256:"):
            digest = f"sha256:{digest}"

        artifact = Artifact(
            digest=digest,
            source_revision=source_revision,
            image_ref=self.repository,
        )
        logger.info("built %s", artifact.pinned_ref)
        return artifact
