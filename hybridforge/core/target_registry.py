"""Deployment Target Registry: pure lookup of configured cluster targets.

Targets are loaded once at startup (typically from a TOML file) and are
read-only afterwards. Resolution never touches the network.

File format::

    [targets.staging]
    cluster_kind = "kubernetes"
    endpoint = "https://api.staging.example.com:6443"
    credential_ref = "staging-deployer"

    [targets.staging.manifest]
    app_name = "hello-hybrid"
    namespace = "hello"
    replicas = 2
"""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError

from hybridforge.core.errors import UnknownTarget
from hybridforge.models.targets import DeploymentTarget, RouteDialect

logger = logging.getLogger(__name__)


class TargetConfigError(ValueError):
    """Raised when a targets file cannot be parsed or validated."""


class TargetRegistry:
    """Holds DeploymentTargets by name.

    Parameters
    ----------
    targets:
        The targets to register. Names must be unique.
    """

    def __init__(self, targets: Iterable[DeploymentTarget] = ()) -> None:
        self._targets: dict[str, DeploymentTarget] = {}
        for target in targets:
            if target.name in self._targets:
                raise TargetConfigError(f"Duplicate target name: {target.name}")
            self._targets[target.name] = target

    @classmethod
    def from_file(cls, path: Path) -> TargetRegistry:
        """Load targets from a TOML file with ``[targets.<name>]`` tables."""
        path = Path(path)
        try:
            with path.open("rb") as fh:
                data = tomllib.load(fh)
        except FileNotFoundError as exc:
            raise TargetConfigError(f"Targets file not found: {path}") from exc
        except tomllib.TOMLDecodeError as exc:
            raise TargetConfigError(f"Invalid TOML in {path}: {exc}") from exc

        tables = data.get("targets", {})
        if not isinstance(tables, dict):
            raise TargetConfigError(f"[targets] in {path} must be a table")

        targets: list[DeploymentTarget] = []
        for name, table in tables.items():
            try:
                targets.append(DeploymentTarget.model_validate({**table, "name": name}))
            except ValidationError as exc:
                raise TargetConfigError(f"Invalid target {name!r} in {path}: {exc}") from exc

        logger.info("loaded %d target(s) from %s", len(targets), path)
        return cls(targets)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def names(self) -> list[str]:
        return list(self._targets)

    def __contains__(self, name: object) -> bool:
        return name in self._targets

    def __len__(self) -> int:
        return len(self._targets)

    def resolve(self, name: str) -> DeploymentTarget:
        """Return the target called *name*, or raise ``UnknownTarget``."""
        try:
            return self._targets[name]
        except KeyError:
            raise UnknownTarget([name], self.names) from None

    def resolve_all(self, names: Iterable[str]) -> list[DeploymentTarget]:
        """Resolve every name, reporting all unknown names at once."""
        names = list(names)
        unknown = [n for n in names if n not in self._targets]
        if unknown:
            raise UnknownTarget(unknown, self.names)
        return [self._targets[n] for n in names]

    def route_dialect(self, name: str) -> RouteDialect:
        """Capability flag: which exposure schema the target's cluster uses."""
        return self.resolve(name).route_dialect
