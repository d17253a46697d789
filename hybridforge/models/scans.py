"""Vulnerability scan models: findings, severities, and the gate verdict."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """Finding severity, ordered from least to most severe."""

    UNKNOWN = "unknown"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: str) -> Severity:
        """Lenient parse for scanner output (``"CRITICAL"``, ``"Medium"``...)."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.UNKNOWN: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class VerdictKind(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class Finding(BaseModel):
    """A single vulnerability reported by the scan tool."""

    model_config = ConfigDict(frozen=True)

    severity: Severity
    identifier: str  # e.g. "CVE-2024-12345"
    package: str = ""
    description: str = ""


class ScanVerdict(BaseModel):
    """Outcome of scanning one artifact against a severity policy.

    Derived deterministically from the artifact's findings. Findings are
    kept in canonical order (most severe first, then by identifier).
    """

    model_config = ConfigDict(frozen=True)

    artifact_digest: str
    findings: list[Finding] = []
    verdict: VerdictKind
    threshold: Severity = Severity.CRITICAL
    scanned_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def passed(self) -> bool:
        return self.verdict == VerdictKind.PASS

    @property
    def blocking_findings(self) -> list[Finding]:
        """Findings at or above the policy threshold."""
        return [f for f in self.findings if f.severity.rank >= self.threshold.rank]

    def severity_counts(self) -> dict[str, int]:
        """Count of findings per severity (all severities present as keys)."""
        counts = {s.value: 0 for s in Severity}
        for finding in self.findings:
            counts[finding.severity.value] += 1
        return counts
