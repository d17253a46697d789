"""Manifest rendering for both cluster dialects.

A single function renders the workload (Deployment), its Service and its
network exposure object. Only the exposure object differs by dialect:
an Ingress for generic Kubernetes, a Route for OpenShift.
"""

from __future__ import annotations

from typing import Any

from hybridforge.models.artifacts import Artifact
from hybridforge.models.targets import DeploymentTarget, ManifestSpec, RouteDialect

MANAGED_BY = "hybridforge"


def _labels(spec: ManifestSpec) -> dict[str, str]:
    return {
        **spec.labels,
        "app": spec.app_name,
        "app.kubernetes.io/name": spec.app_name,
        "app.kubernetes.io/managed-by": MANAGED_BY,
    }


def _metadata(spec: ManifestSpec, name: str | None = None) -> dict[str, Any]:
    return {
        "name": name or spec.app_name,
        "namespace": spec.namespace,
        "labels": _labels(spec),
    }


def _deployment(spec: ManifestSpec, artifact: Artifact) -> dict[str, Any]:
    container: dict[str, Any] = {
        "name": spec.app_name,
        "image": artifact.pinned_ref,
        "ports": [{"containerPort": spec.container_port}],
        "readinessProbe": {
            "tcpSocket": {"port": spec.container_port},
            "periodSeconds": 5,
        },
    }
    if spec.env:
        container["env"] = [{"name": k, "value": v} for k, v in sorted(spec.env.items())]

    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": _metadata(spec),
        "spec": {
            "replicas": spec.replicas,
            "selector": {"matchLabels": {"app": spec.app_name}},
            "template": {
                "metadata": {"labels": _labels(spec)},
                "spec": {"containers": [container]},
            },
        },
    }


def _service(spec: ManifestSpec) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _metadata(spec),
        "spec": {
            "type": "ClusterIP",
            "selector": {"app": spec.app_name},
            "ports": [
                {
                    "name": "http",
                    "port": spec.service_port,
                    "targetPort": spec.container_port,
                }
            ],
        },
    }


def _ingress(spec: ManifestSpec) -> dict[str, Any]:
    rule: dict[str, Any] = {
        "http": {
            "paths": [
                {
                    "path": "/",
                    "pathType": "Prefix",
                    "backend": {
                        "service": {
                            "name": spec.app_name,
                            "port": {"number": spec.service_port},
                        }
                    },
                }
            ]
        }
    }
    if spec.host:
        rule["host"] = spec.host
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": _metadata(spec),
        "spec": {"rules": [rule]},
    }


def _route(spec: ManifestSpec) -> dict[str, Any]:
    route_spec: dict[str, Any] = {
        "to": {"kind": "Service", "name": spec.app_name, "weight": 100},
        "port": {"targetPort": "http"},
        "tls": {
            "termination": "edge",
            "insecureEdgeTerminationPolicy": "Redirect",
        },
    }
    if spec.host:
        route_spec["host"] = spec.host
    return {
        "apiVersion": "route.openshift.io/v1",
        "kind": "Route",
        "metadata": _metadata(spec),
        "spec": route_spec,
    }


def render_manifests(target: DeploymentTarget, artifact: Artifact) -> list[dict[str, Any]]:
    """Render the manifest set for *target* pinned to *artifact*'s digest."""
    spec = target.manifest
    exposure = _route(spec) if target.route_dialect == RouteDialect.ROUTE_EXTENDED else _ingress(spec)
    return [_deployment(spec, artifact), _service(spec), exposure]


def find_workload(manifests: list[dict[str, Any]]) -> dict[str, Any]:
    """Return the Deployment from a manifest set."""
    for manifest in manifests:
        if manifest.get("kind") == "Deployment":
            return manifest
    raise ValueError("manifest set has no Deployment")
