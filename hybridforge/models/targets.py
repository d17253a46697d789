"""Deployment target models: cluster kinds and their capability flags."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ClusterKind(str, Enum):
    """Flavor of cluster API a target exposes."""

    KUBERNETES = "kubernetes"
    OPENSHIFT = "openshift"


class RouteDialect(str, Enum):
    """Schema used for network exposure objects.

    ``generic`` clusters get a ``networking.k8s.io/v1`` Ingress;
    ``route-extended`` clusters get a ``route.openshift.io/v1`` Route.
    """

    GENERIC = "generic"
    ROUTE_EXTENDED = "route-extended"


_DIALECTS: dict[ClusterKind, RouteDialect] = {
    ClusterKind.KUBERNETES: RouteDialect.GENERIC,
    ClusterKind.OPENSHIFT: RouteDialect.ROUTE_EXTENDED,
}


class ManifestSpec(BaseModel):
    """Inputs for rendering a target's workload and exposure objects."""

    model_config = ConfigDict(frozen=True)

    app_name: str = "hello-hybrid"
    namespace: str = "default"
    replicas: int = Field(default=1, ge=1)
    container_port: int = Field(default=8080, gt=0, lt=65536)
    service_port: int = Field(default=80, gt=0, lt=65536)
    host: str = ""  # public hostname; empty lets the cluster assign one
    labels: dict[str, str] = {}
    env: dict[str, str] = {}


class DeploymentTarget(BaseModel):
    """One deployment destination: a cluster/environment pairing.

    Configured once at startup and read-only during a pipeline run.
    ``credential_ref`` names a secret in the external secret store; the
    secret itself is never held here.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    cluster_kind: ClusterKind = ClusterKind.KUBERNETES
    endpoint: str
    credential_ref: str
    manifest: ManifestSpec = ManifestSpec()
    health_timeout_seconds: float | None = None  # overrides the pipeline default

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("target name must not be blank")
        return value

    @property
    def route_dialect(self) -> RouteDialect:
        return _DIALECTS[self.cluster_kind]
