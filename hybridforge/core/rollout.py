"""Rollout Coordinator: per-target deploy state machine with rollback.

Lifecycle per target per run::

    pending -> applying -> healthy
                        -> failed -> rolled_back   (previous healthy revision restored)

Enforces:
- Valid transitions only (VALID_TRANSITIONS table)
- Revision-based idempotence: if the target's last recorded revision is
  the one being deployed and it is healthy, nothing is applied
- Transient apply errors retried with bounded backoff; health failures
  are never retried
- Automatic rollback to the last known-healthy revision on failure
- Every transition recorded in the Run Ledger

All mutable state is per target. Branches for different targets share
only the ledger and the manifest store, both of which are safe to use
from several threads.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from hybridforge.core.cluster import ClusterClient, ClusterFactory
from hybridforge.core.errors import (
    ApplyError,
    HealthTimeout,
    HybridforgeError,
    RollbackFailure,
    ScanPolicyViolation,
    TransientApplyError,
)
from hybridforge.core.manifest_store import ManifestIntegrityError, ManifestStore
from hybridforge.core.manifests import find_workload, render_manifests
from hybridforge.core.retry import RetryExhausted, retry_call
from hybridforge.core.run_ledger import RunLedger
from hybridforge.core.secrets import SecretStore, acquire_credential
from hybridforge.models.artifacts import Artifact
from hybridforge.models.ledger import LedgerEntry
from hybridforge.models.rollouts import (
    VALID_TRANSITIONS,
    RolloutRecord,
    RolloutStatus,
    RolloutTransition,
)
from hybridforge.models.scans import ScanVerdict
from hybridforge.models.targets import DeploymentTarget

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested rollout status transition is not valid."""


class RevisionHistory:
    """Manifest revisions recorded for one target, oldest first.

    Each revision appears once; redeploying a revision moves it to the
    end with its new status. ``live_revision`` is the revision currently
    believed to be applied on the cluster.
    """

    def __init__(self) -> None:
        self._statuses: dict[str, RolloutStatus] = {}
        self.live_revision: str = ""

    def record(self, revision: str, status: RolloutStatus) -> None:
        self._statuses.pop(revision, None)
        self._statuses[revision] = status

    @property
    def revisions(self) -> list[str]:
        return list(self._statuses)

    def status_of(self, revision: str) -> RolloutStatus | None:
        return self._statuses.get(revision)

    def last_healthy(self, exclude: str = "") -> str | None:
        """Most recent healthy revision other than *exclude*."""
        for revision in reversed(self._statuses):
            if revision != exclude and self._statuses[revision] == RolloutStatus.HEALTHY:
                return revision
        return None

    def is_live_and_healthy(self, revision: str) -> bool:
        return (
            self.live_revision == revision
            and self._statuses.get(revision) == RolloutStatus.HEALTHY
        )


class RolloutCoordinator:
    """Applies manifests to targets, waits for readiness, rolls back on failure.

    Parameters
    ----------
    cluster_factory:
        Opens a ClusterClient for a target given its credential.
    secret_store:
        Source of per-target credentials.
    store:
        Content-addressed store for rendered manifest sets.
    ledger:
        Optional audit ledger. When given, per-target history is rebuilt
        from it so rollbacks work across processes.
    health_timeout:
        Default seconds to wait for readiness (targets may override).
    poll_interval:
        Seconds between readiness polls.
    apply_attempts:
        Maximum apply attempts on transient API errors.
    backoff_base:
        First retry delay in seconds; doubles per attempt.
    rollback_on_failure:
        Restore the last healthy revision when a rollout fails.
    """

    def __init__(
        self,
        cluster_factory: ClusterFactory,
        secret_store: SecretStore,
        store: ManifestStore,
        *,
        ledger: RunLedger | None = None,
        health_timeout: float = 300.0,
        poll_interval: float = 5.0,
        apply_attempts: int = 3,
        backoff_base: float = 1.0,
        rollback_on_failure: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cluster_factory = cluster_factory
        self.secret_store = secret_store
        self.store = store
        self.ledger = ledger
        self.health_timeout = health_timeout
        self.poll_interval = poll_interval
        self.apply_attempts = apply_attempts
        self.backoff_base = backoff_base
        self.rollback_on_failure = rollback_on_failure
        self._clock = clock
        self._sleep = sleep
        # Guards creation of per-target histories only; each history is
        # touched by its own target's branch.
        self._histories: dict[str, RevisionHistory] = {}
        self._histories_lock = threading.Lock()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def history(self, target_name: str) -> RevisionHistory:
        """Revision history for *target_name*, rebuilt from the ledger once."""
        with self._histories_lock:
            history = self._histories.get(target_name)
            if history is None:
                history = self._rebuild_history(target_name)
                self._histories[target_name] = history
            return history

    def _rebuild_history(self, target_name: str) -> RevisionHistory:
        history = RevisionHistory()
        if self.ledger is None:
            return history
        for entry in self.ledger.get_target_entries(target_name):
            to_state = entry.to_state
            if to_state == RolloutStatus.HEALTHY.value and entry.manifest_revision:
                history.record(entry.manifest_revision, RolloutStatus.HEALTHY)
                history.live_revision = entry.manifest_revision
            elif to_state == RolloutStatus.FAILED.value and entry.manifest_revision:
                history.record(entry.manifest_revision, RolloutStatus.FAILED)
                if entry.detail.get("applied"):
                    history.live_revision = entry.manifest_revision
            elif to_state == RolloutStatus.ROLLED_BACK.value:
                history.live_revision = entry.detail.get("rolled_back_to", "")
        return history

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def deploy(
        self,
        target: DeploymentTarget,
        artifact: Artifact,
        *,
        verdict: ScanVerdict | None = None,
        run_id: str = "manual",
    ) -> RolloutRecord:
        """Roll *artifact* out to *target* and return the terminal record.

        Branch-stage failures (apply errors, health timeouts, missing
        credentials) are captured on the record, never raised. When
        *verdict* is given it must be a passing verdict for the same
        digest, otherwise ``ScanPolicyViolation`` is raised before any
        work starts.
        """
        if verdict is not None and (
            not verdict.passed or verdict.artifact_digest != artifact.digest
        ):
            raise ScanPolicyViolation(
                f"No passing scan verdict for {artifact.digest}; refusing to deploy to {target.name}"
            )

        record = RolloutRecord(target_name=target.name, artifact_digest=artifact.digest)
        history = self.history(target.name)
        logger.info("rollout of %s to %s started", artifact.short_digest, target.name)

        try:
            with acquire_credential(self.secret_store, target.credential_ref) as credential:
                client = self.cluster_factory(target, credential)
                try:
                    self._roll_out(record, target, artifact, client, history, run_id)
                finally:
                    client.close()
        except HybridforgeError as exc:
            if record.status in (RolloutStatus.PENDING, RolloutStatus.APPLYING):
                record.error = exc.to_stage_error()
                self._transition(record, RolloutStatus.FAILED, run_id, note=exc.message)
            else:
                logger.error(
                    "%s after rollout of %s reached %s: %s",
                    type(exc).__name__,
                    target.name,
                    record.status.value,
                    exc,
                )

        record.finished_at = datetime.now(timezone.utc)
        logger.info(
            "rollout of %s to %s finished: %s",
            artifact.short_digest,
            target.name,
            record.status.value,
        )
        return record

    def rollback(self, target: DeploymentTarget, *, run_id: str = "manual") -> RolloutRecord:
        """Re-apply the last healthy revision before the live one.

        Raises ``RollbackFailure`` if there is no such revision or it
        cannot be restored.
        """
        history = self.history(target.name)
        previous = history.last_healthy(exclude=history.live_revision)
        if previous is None:
            raise RollbackFailure(f"No previous healthy revision recorded for {target.name}")

        manifests = self._load(previous)
        record = RolloutRecord(
            target_name=target.name,
            artifact_digest=_image_digest(manifests),
            manifest_revision=previous,
        )
        with acquire_credential(self.secret_store, target.credential_ref) as credential:
            client = self.cluster_factory(target, credential)
            try:
                self._transition(record, RolloutStatus.APPLYING, run_id, note="manual rollback")
                try:
                    self._apply(client, target, manifests, record)
                    history.live_revision = previous
                    self._wait_healthy(client, target)
                except (ApplyError, HealthTimeout) as exc:
                    record.error = exc.to_stage_error()
                    self._transition(record, RolloutStatus.FAILED, run_id, note=exc.message)
                    raise RollbackFailure(
                        f"Manual rollback of {target.name} to {previous} failed: {exc.message}",
                        diagnostics=exc.diagnostics,
                    ) from exc
                history.record(previous, RolloutStatus.HEALTHY)
                self._transition(record, RolloutStatus.HEALTHY, run_id, note="manual rollback")
            finally:
                client.close()

        record.finished_at = datetime.now(timezone.utc)
        return record

    # ------------------------------------------------------------------
    # Rollout steps
    # ------------------------------------------------------------------

    def _roll_out(
        self,
        record: RolloutRecord,
        target: DeploymentTarget,
        artifact: Artifact,
        client: ClusterClient,
        history: RevisionHistory,
        run_id: str,
    ) -> None:
        manifests = render_manifests(target, artifact)
        revision = self.store.store(manifests)
        record.manifest_revision = revision

        if history.is_live_and_healthy(revision):
            logger.info("%s already at healthy revision %s; skipping apply", target.name, revision[:19])
            record.reused = True
            self._transition(record, RolloutStatus.APPLYING, run_id, note="revision already applied")
            self._transition(record, RolloutStatus.HEALTHY, run_id, detail={"reused": True})
            return

        self._transition(record, RolloutStatus.APPLYING, run_id)
        applied = False
        try:
            self._apply(client, target, manifests, record)
            applied = True
            history.live_revision = revision
            self._wait_healthy(client, target)
        except (ApplyError, HealthTimeout) as exc:
            logger.error("rollout to %s failed: %s", target.name, exc)
            record.error = exc.to_stage_error()
            history.record(revision, RolloutStatus.FAILED)
            self._transition(
                record,
                RolloutStatus.FAILED,
                run_id,
                note=exc.message,
                detail={"applied": applied},
            )
            if self.rollback_on_failure:
                self._auto_rollback(record, target, client, history, run_id)
            return

        history.record(revision, RolloutStatus.HEALTHY)
        self._transition(record, RolloutStatus.HEALTHY, run_id)

    def _auto_rollback(
        self,
        record: RolloutRecord,
        target: DeploymentTarget,
        client: ClusterClient,
        history: RevisionHistory,
        run_id: str,
    ) -> None:
        previous = history.last_healthy(exclude=record.manifest_revision)
        if previous is None:
            logger.warning(
                "%s has no previous healthy revision; leaving it failed for manual intervention",
                target.name,
            )
            return

        logger.info("rolling %s back to %s", target.name, previous[:19])
        try:
            manifests = self._load(previous)
            self._apply(client, target, manifests, record)
            history.live_revision = previous
            self._wait_healthy(client, target)
        except (ApplyError, HealthTimeout, RollbackFailure) as exc:
            failure = RollbackFailure(
                f"Rollback of {target.name} to {previous} failed: {exc.message}",
                diagnostics=exc.diagnostics,
            )
            logger.error("%s", failure)
            record.rollback_error = failure.to_stage_error()
            return

        record.rolled_back_to = previous
        self._transition(
            record,
            RolloutStatus.ROLLED_BACK,
            run_id,
            note=f"restored {previous}",
            detail={"rolled_back_to": previous},
        )

    def _load(self, revision: str) -> list[dict[str, Any]]:
        try:
            return self.store.load(revision)
        except (FileNotFoundError, ManifestIntegrityError) as exc:
            raise RollbackFailure(f"Cannot load revision {revision}: {exc}") from exc

    def _apply(
        self,
        client: ClusterClient,
        target: DeploymentTarget,
        manifests: list[dict[str, Any]],
        record: RolloutRecord,
    ) -> None:
        def _count(_attempt: int) -> None:
            record.apply_attempts += 1

        try:
            retry_call(
                lambda: client.apply(manifests),
                retry_on=(TransientApplyError,),
                attempts=self.apply_attempts,
                base_delay=self.backoff_base,
                sleep=self._sleep,
                description=f"apply to {target.name}",
                on_attempt=_count,
            )
        except RetryExhausted as exc:
            raise ApplyError(
                f"Apply to {target.name} failed after {exc.attempts} attempt(s)",
                diagnostics=str(exc.last_error),
            ) from exc

    def _wait_healthy(self, client: ClusterClient, target: DeploymentTarget) -> None:
        """Poll readiness until the declared replica count is ready.

        Raises ``HealthTimeout`` once the timeout expires.
        """
        spec = target.manifest
        timeout = (
            target.health_timeout_seconds
            if target.health_timeout_seconds is not None
            else self.health_timeout
        )
        deadline = self._clock() + timeout
        ready = 0

        while True:
            try:
                ready = client.ready_replicas(spec.namespace, spec.app_name)
            except TransientApplyError as exc:
                logger.debug("readiness poll on %s failed: %s", target.name, exc)
                ready = 0
            if ready >= spec.replicas:
                return

            now = self._clock()
            if now >= deadline:
                raise HealthTimeout(
                    f"{target.name}: {ready}/{spec.replicas} replicas ready "
                    f"after {timeout:g}s"
                )
            self._sleep(min(self.poll_interval, deadline - now))

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(
        self,
        record: RolloutRecord,
        to_status: RolloutStatus,
        run_id: str,
        *,
        note: str = "",
        detail: dict[str, Any] | None = None,
    ) -> None:
        current = record.status
        allowed = VALID_TRANSITIONS.get(current, set())
        if to_status not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {record.target_name} from {current.value} to {to_status.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        record.transitions = [
            *record.transitions,
            RolloutTransition(from_status=current, to_status=to_status, note=note),
        ]
        record.status = to_status

        if self.ledger is not None:
            entry_detail = dict(detail or {})
            if note:
                entry_detail["note"] = note
            if to_status == RolloutStatus.FAILED and record.error is not None:
                entry_detail["error"] = record.error.model_dump(mode="json")
            self.ledger.append(
                LedgerEntry(
                    run_id=run_id,
                    stage_id=f"deploy:{record.target_name}",
                    state_transition=f"{current.value}->{to_status.value}",
                    target_name=record.target_name,
                    artifact_digest=record.artifact_digest,
                    manifest_revision=record.manifest_revision,
                    detail=entry_detail,
                )
            )


def _image_digest(manifests: list[dict[str, Any]]) -> str:
    """Digest of the image pinned in a manifest set's Deployment."""
    image = find_workload(manifests)["spec"]["template"]["spec"]["containers"][0]["image"]
    return image.rsplit("@", 1)[-1]
