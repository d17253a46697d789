"""Credential access: secrets fetched by reference, held only while in use.

A target's credential is acquired when its rollout branch starts and
released when the branch finishes or errors. Nothing here persists
secret material.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, SecretStr

from hybridforge.core.errors import CredentialError

logger = logging.getLogger(__name__)


class Credential(BaseModel):
    """A bearer token for one cluster, valid for one branch."""

    model_config = ConfigDict(frozen=True)

    ref: str
    token: SecretStr


@runtime_checkable
class SecretStore(Protocol):
    """Protocol for external secret stores."""

    def get(self, ref: str) -> str:
        """Return the secret value for *ref*, or raise ``KeyError``."""
        ...

    def release(self, ref: str) -> None:
        """Called when the holder of *ref* is done with it."""
        ...


class EnvSecretStore:
    """Reads secrets from environment variables.

    ``staging-deployer`` is looked up as ``HYBRIDFORGE_SECRET_STAGING_DEPLOYER``.
    """

    def __init__(self, prefix: str = "HYBRIDFORGE_SECRET_", environ: Mapping[str, str] | None = None) -> None:
        self.prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def variable_for(self, ref: str) -> str:
        return self.prefix + re.sub(r"[^A-Za-z0-9]", "_", ref).upper()

    def get(self, ref: str) -> str:
        value = self._environ.get(self.variable_for(ref), "")
        if not value:
            raise KeyError(ref)
        return value

    def release(self, ref: str) -> None:
        pass


class StaticSecretStore:
    """In-memory secret store for demos and tests."""

    def __init__(self, secrets: Mapping[str, str] | None = None) -> None:
        self._secrets = dict(secrets or {})
        self._lock = threading.Lock()
        self.active = 0  # credentials currently held

    def get(self, ref: str) -> str:
        value = self._secrets[ref]
        with self._lock:
            self.active += 1
        return value

    def release(self, ref: str) -> None:
        with self._lock:
            self.active -= 1


@contextmanager
def acquire_credential(store: SecretStore, ref: str) -> Iterator[Credential]:
    """Fetch a credential for the duration of the ``with`` block."""
    try:
        token = store.get(ref)
    except KeyError:
        raise CredentialError(f"Secret {ref!r} not found in secret store") from None

    logger.debug("acquired credential %s", ref)
    try:
        yield Credential(ref=ref, token=SecretStr(token))
    finally:
        store.release(ref)
        logger.debug("released credential %s", ref)
