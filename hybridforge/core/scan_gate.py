"""Vulnerability Gate: scans artifacts and applies the severity policy.

Verdicts are cached by artifact digest: rescanning an unchanged artifact
never calls the scan tool again. Transient scan-service errors are
retried with bounded exponential backoff; exhausting the retries raises
``ScanUnavailable``, which is distinct from a ``fail`` verdict.
"""

from __future__ import annotations

import json
import logging
import subprocess
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from hybridforge.core.errors import (
    ScanPolicyViolation,
    ScanUnavailable,
    TransientScanError,
)
from hybridforge.core.retry import RetryExhausted, retry_call
from hybridforge.models.artifacts import Artifact
from hybridforge.models.scans import Finding, ScanVerdict, Severity, VerdictKind

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ScanTool(Protocol):
    """Protocol for vulnerability scanners.

    Implementations raise ``TransientScanError`` when the service is
    temporarily unavailable.
    """

    def scan(self, image_ref: str) -> list[Finding]:
        ...


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class TrivyScanTool:
    """Scans images with the ``trivy`` CLI (``--format json``)."""

    def __init__(self, timeout: float = 300.0, binary: str = "trivy") -> None:
        self.timeout = timeout
        self.binary = binary

    def scan(self, image_ref: str) -> list[Finding]:
        cmd = [self.binary, "image", "--quiet", "--format", "json", image_ref]
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise TransientScanError(f"{self.binary} not found on PATH") from exc
        except subprocess.TimeoutExpired as exc:
            raise TransientScanError(
                f"scan of {image_ref} timed out after {self.timeout}s"
            ) from exc

        if proc.returncode != 0:
            raise TransientScanError(
                f"{self.binary} exited with {proc.returncode}: {proc.stderr.strip()}"
            )
        try:
            report = json.loads(proc.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise TransientScanError(
                f"{self.binary} returned unreadable output for {image_ref}: {exc}"
            ) from exc
        if not isinstance(report, dict):
            raise TransientScanError(
                f"{self.binary} returned a {type(report).__name__}, expected a JSON object"
            )
        return parse_trivy_report(report)


def parse_trivy_report(report: dict[str, Any]) -> list[Finding]:
    """Extract findings from a trivy JSON report."""
    findings: list[Finding] = []
    for result in report.get("Results") or []:
        for vuln in result.get("Vulnerabilities") or []:
            findings.append(
                Finding(
                    severity=Severity.parse(vuln.get("Severity", "")),
                    identifier=vuln.get("VulnerabilityID", ""),
                    package=vuln.get("PkgName", ""),
                    description=vuln.get("Title", ""),
                )
            )
    return findings


class StaticScanTool:
    """In-process scanner returning fixed findings, for demos and tests.

    Parameters
    ----------
    findings:
        Findings keyed by image digest; ``default`` is used otherwise.
    transient_failures:
        Number of calls that raise ``TransientScanError`` before succeeding.
    """

    def __init__(
        self,
        findings: dict[str, list[Finding]] | None = None,
        default: list[Finding] | None = None,
        transient_failures: int = 0,
    ) -> None:
        self.findings = findings or {}
        self.default = list(default or [])
        self.transient_failures = transient_failures
        self.calls = 0

    def scan(self, image_ref: str) -> list[Finding]:
        self.calls += 1
        if self.calls <= self.transient_failures:
            raise TransientScanError("scan service unavailable")
        digest = image_ref.rsplit("@", 1)[-1]
        return list(self.findings.get(digest, self.default))


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


def _finding_sort_key(finding: Finding) -> tuple[int, str, str]:
    return (-finding.severity.rank, finding.identifier, finding.package)


def classify(
    artifact_digest: str,
    findings: list[Finding],
    threshold: Severity = Severity.CRITICAL,
) -> ScanVerdict:
    """Apply the severity policy to a set of findings.

    The verdict is ``fail`` if any finding is at or above *threshold*.
    """
    ordered = sorted(findings, key=_finding_sort_key)
    failing = any(f.severity.rank >= threshold.rank for f in ordered)
    return ScanVerdict(
        artifact_digest=artifact_digest,
        findings=ordered,
        verdict=VerdictKind.FAIL if failing else VerdictKind.PASS,
        threshold=threshold,
    )


class VulnerabilityGate:
    """Scans artifacts and decides whether they may be deployed.

    Parameters
    ----------
    tool:
        The scan backend.
    threshold:
        Lowest severity that fails the gate.
    attempts:
        Maximum scan attempts on transient errors.
    backoff_base:
        First retry delay in seconds; doubles per attempt.
    """

    def __init__(
        self,
        tool: ScanTool,
        threshold: Severity = Severity.CRITICAL,
        *,
        attempts: int = 3,
        backoff_base: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.tool = tool
        self.threshold = threshold
        self.attempts = attempts
        self.backoff_base = backoff_base
        self._sleep = sleep
        self._cache: dict[str, ScanVerdict] = {}
        self._lock = threading.Lock()

    def cached(self, digest: str) -> ScanVerdict | None:
        with self._lock:
            return self._cache.get(digest)

    def scan(self, artifact: Artifact) -> ScanVerdict:
        """Return the verdict for *artifact*, scanning at most once per digest.

        Raises ``ScanUnavailable`` when the scan service stays unavailable.
        """
        existing = self.cached(artifact.digest)
        if existing is not None:
            logger.debug("scan cache hit for %s", artifact.short_digest)
            return existing

        logger.info("scanning %s", artifact.pinned_ref)
        try:
            findings = retry_call(
                lambda: self.tool.scan(artifact.pinned_ref),
                retry_on=(TransientScanError,),
                attempts=self.attempts,
                base_delay=self.backoff_base,
                sleep=self._sleep,
                description=f"scan of {artifact.short_digest}",
            )
        except RetryExhausted as exc:
            raise ScanUnavailable(
                f"Scan service unavailable for {artifact.digest} "
                f"after {exc.attempts} attempt(s)",
                diagnostics=str(exc.last_error),
            ) from exc

        verdict = classify(artifact.digest, findings, self.threshold)
        with self._lock:
            verdict = self._cache.setdefault(artifact.digest, verdict)

        logger.info(
            "scan of %s: %s (%d finding(s), threshold=%s)",
            artifact.short_digest,
            verdict.verdict.value,
            len(verdict.findings),
            self.threshold.value,
        )
        return verdict

    @staticmethod
    def enforce(verdict: ScanVerdict) -> None:
        """Raise ``ScanPolicyViolation`` if *verdict* is ``fail``."""
        if verdict.passed:
            return
        blocking = verdict.blocking_findings
        ids = ", ".join(f.identifier for f in blocking[:5])
        more = f" (+{len(blocking) - 5} more)" if len(blocking) > 5 else ""
        raise ScanPolicyViolation(
            f"{len(blocking)} finding(s) at or above {verdict.threshold.value}: {ids}{more}",
            diagnostics="\n".join(
                f"{f.severity.value}\t{f.identifier}\t{f.package}" for f in blocking
            ),
        )
