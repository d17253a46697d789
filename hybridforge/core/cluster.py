"""Cluster API clients: apply manifests and read workload readiness.

Both cluster flavors speak the same apply/status API; the OpenShift
flavor additionally accepts Route objects, which is why rendering (not
the client) is dialect-aware. A client is opened per rollout branch with
that target's credential and closed when the branch ends.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import tempfile
import threading
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from hybridforge.core.errors import ApplyError, TransientApplyError
from hybridforge.core.manifests import find_workload
from hybridforge.core.secrets import Credential
from hybridforge.models.targets import ClusterKind, DeploymentTarget

logger = logging.getLogger(__name__)

# stderr fragments from kubectl/oc that indicate a retryable API failure
_TRANSIENT_MARKERS: tuple[str, ...] = (
    "connection refused",
    "i/o timeout",
    "tls handshake timeout",
    "serviceunavailable",
    "service unavailable",
    "too many requests",
    "etcdserver: request timed out",
    "the server is currently unable to handle the request",
    "internal error occurred",
)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ClusterClient(Protocol):
    """Protocol for one target's cluster API session.

    ``apply`` raises ``TransientApplyError`` for retryable API failures
    and ``ApplyError`` for permanent ones.
    """

    def apply(self, manifests: list[dict[str, Any]]) -> None:
        ...

    def ready_replicas(self, namespace: str, name: str) -> int:
        ...

    def close(self) -> None:
        ...


ClusterFactory = Callable[[DeploymentTarget, Credential], ClusterClient]


# ---------------------------------------------------------------------------
# kubectl / oc
# ---------------------------------------------------------------------------


class KubectlClusterClient:
    """Talks to a cluster through ``kubectl`` (or ``oc`` for OpenShift).

    A throwaway kubeconfig holding the branch's token is written on
    construction and deleted by ``close()``.
    """

    def __init__(
        self,
        target: DeploymentTarget,
        credential: Credential,
        *,
        timeout: float = 120.0,
        binary: str | None = None,
    ) -> None:
        self.target = target
        self.timeout = timeout
        self.binary = binary or ("oc" if target.cluster_kind == ClusterKind.OPENSHIFT else "kubectl")
        self._kubeconfig = self._write_kubeconfig(target, credential)

    @staticmethod
    def _write_kubeconfig(target: DeploymentTarget, credential: Credential) -> str:
        kubeconfig = {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [{"name": target.name, "cluster": {"server": target.endpoint}}],
            "users": [{"name": credential.ref, "user": {"token": credential.token.get_secret_value()}}],
            "contexts": [{
                "name": target.name,
                "context": {
                    "cluster": target.name,
                    "user": credential.ref,
                    "namespace": target.manifest.namespace,
                },
            }],
            "current-context": target.name,
        }
        fd, path = tempfile.mkstemp(prefix=f"hybridforge-{target.name}-", suffix=".kubeconfig")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(kubeconfig, fh)
        return path

    def _run(self, args: list[str], stdin: str | None = None) -> str:
        cmd = [self.binary, "--kubeconfig", self._kubeconfig, *args]
        try:
            proc = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ApplyError(f"{self.binary} not found on PATH") from exc
        except subprocess.TimeoutExpired as exc:
            raise TransientApplyError(
                f"{self.binary} {args[0]} timed out after {self.timeout}s"
            ) from exc

        if proc.returncode != 0:
            stderr = proc.stderr.strip()
            if any(marker in stderr.lower() for marker in _TRANSIENT_MARKERS):
                raise TransientApplyError(stderr)
            raise ApplyError(
                f"{self.binary} {args[0]} failed on {self.target.name}",
                diagnostics=stderr,
            )
        return proc.stdout

    def apply(self, manifests: list[dict[str, Any]]) -> None:
        document = {"apiVersion": "v1", "kind": "List", "items": manifests}
        self._run(["apply", "-f", "-"], stdin=json.dumps(document))

    def ready_replicas(self, namespace: str, name: str) -> int:
        out = self._run(["get", "deployment", name, "-n", namespace, "-o", "json"])
        try:
            document = json.loads(out)
            return int(document.get("status", {}).get("readyReplicas") or 0)
        except (ValueError, AttributeError, TypeError) as exc:
            raise TransientApplyError(
                f"unreadable status for deployment {namespace}/{name}: {exc}"
            ) from exc

    def close(self) -> None:
        try:
            os.unlink(self._kubeconfig)
        except FileNotFoundError:
            pass


def kubectl_factory(timeout: float = 120.0) -> ClusterFactory:
    """Factory producing a kubectl/oc client per branch."""

    def _factory(target: DeploymentTarget, credential: Credential) -> ClusterClient:
        return KubectlClusterClient(target, credential, timeout=timeout)

    return _factory


# ---------------------------------------------------------------------------
# In-memory cluster
# ---------------------------------------------------------------------------


class InMemoryCluster:
    """A simulated cluster for demos and tests.

    Live state is the last applied object per (kind, namespace, name).
    A workload reports all replicas ready after ``ready_after_polls``
    readiness polls, unless its image is listed in ``unhealthy_images``.

    Parameters
    ----------
    transient_apply_failures:
        Number of apply calls that raise ``TransientApplyError`` first.
        Negative means every apply fails transiently.
    permanent_apply_error:
        If set, every apply raises ``ApplyError`` with this message.
    """

    def __init__(
        self,
        *,
        ready_after_polls: int = 0,
        unhealthy_images: set[str] | None = None,
        transient_apply_failures: int = 0,
        permanent_apply_error: str = "",
    ) -> None:
        self.ready_after_polls = ready_after_polls
        self.unhealthy_images: set[str] = set(unhealthy_images or ())
        self.transient_apply_failures = transient_apply_failures
        self.permanent_apply_error = permanent_apply_error
        self.apply_calls = 0
        self.applied: list[list[dict[str, Any]]] = []
        self.closed = 0
        self._live: dict[tuple[str, str, str], dict[str, Any]] = {}
        self._polls: dict[tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def apply(self, manifests: list[dict[str, Any]]) -> None:
        with self._lock:
            self.apply_calls += 1
            if self.permanent_apply_error:
                raise ApplyError(self.permanent_apply_error)
            if self.transient_apply_failures < 0 or self.apply_calls <= self.transient_apply_failures:
                raise TransientApplyError("cluster API unavailable")

            for manifest in manifests:
                meta = manifest["metadata"]
                key = (manifest["kind"], meta.get("namespace", "default"), meta["name"])
                self._live[key] = json.loads(json.dumps(manifest))
            workload = find_workload(manifests)["metadata"]
            self._polls[(workload.get("namespace", "default"), workload["name"])] = 0
            self.applied.append(manifests)

    def ready_replicas(self, namespace: str, name: str) -> int:
        with self._lock:
            deployment = self._live.get(("Deployment", namespace, name))
            if deployment is None:
                return 0
            polls = self._polls.get((namespace, name), 0) + 1
            self._polls[(namespace, name)] = polls

            image = deployment["spec"]["template"]["spec"]["containers"][0]["image"]
            if image in self.unhealthy_images or polls <= self.ready_after_polls:
                return 0
            return int(deployment["spec"]["replicas"])

    def close(self) -> None:
        with self._lock:
            self.closed += 1

    def live_manifests(self) -> list[dict[str, Any]]:
        """Current live objects, ordered Deployment, Service, exposure."""
        order = {"Deployment": 0, "Service": 1}
        with self._lock:
            return sorted(
                (json.loads(json.dumps(m)) for m in self._live.values()),
                key=lambda m: (order.get(m["kind"], 2), m["metadata"]["name"]),
            )

    def live_image(self, namespace: str, name: str) -> str:
        with self._lock:
            deployment = self._live[("Deployment", namespace, name)]
            return deployment["spec"]["template"]["spec"]["containers"][0]["image"]


def in_memory_factory(clusters: dict[str, InMemoryCluster]) -> ClusterFactory:
    """Factory mapping target names to simulated clusters."""

    def _factory(target: DeploymentTarget, credential: Credential) -> ClusterClient:
        return clusters[target.name]

    return _factory
