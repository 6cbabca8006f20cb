"""
Remote state identity — which state object a module writes to.

Two modules with the same identity mutate the same Terraform state, so
they must never run at the same time, dependency edge or not. The
identity's ``key`` doubles as the lock key.

Only address-significant backend parameters take part: credentials,
regions and other connection hints do not change which object is
addressed and are left out.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict

from spin.core.errors import RemoteStateError
from spin.core.models.config import RemoteState
from spin.core.models.module import Module

logger = logging.getLogger(__name__)

# Backends whose state lives on the local disk of whoever runs the tool.
LOCAL_BACKENDS = frozenset({"local"})

# Parameters that address the state object, per backend kind.
ADDRESS_PARAMS: dict[str, tuple[str, ...]] = {
    "s3": ("bucket", "key"),
    "gcs": ("bucket", "prefix"),
    "azurerm": ("storage_account_name", "container_name", "key"),
    "consul": ("address", "path"),
    "http": ("address",),
    "pg": ("conn_str", "schema_name"),
    "kubernetes": ("namespace", "secret_suffix"),
    "oss": ("bucket", "prefix", "key"),
    "cos": ("bucket", "prefix", "key"),
    "remote": ("hostname", "organization", "workspaces"),
    "cloud": ("hostname", "organization", "workspaces"),
}

# Connection-only parameters, ignored for backends not listed above.
OPERATIONAL_PARAMS = frozenset({
    "region", "endpoint", "endpoints", "profile", "shared_credentials_file",
    "shared_config_files", "access_key", "secret_key", "token", "role_arn",
    "session_name", "external_id", "assume_role", "credentials",
    "access_token", "client_id", "client_secret", "tenant_id",
    "subscription_id", "sas_token", "use_azuread_auth", "password",
    "username", "encrypt", "kms_key_id", "acl", "skip_credentials_validation",
    "skip_region_validation", "skip_metadata_api_check", "max_retries",
    "retry_max", "retry_wait_min", "retry_wait_max", "timeout",
    "dynamodb_table", "lock_table", "lock_address", "unlock_address",
    "lock_method", "unlock_method", "insecure", "ca_file", "cert_file",
    "key_file", "http_proxy",
})


class RemoteStateIdentity(BaseModel):
    """Canonical identity of a remote state object. Hashable."""

    model_config = ConfigDict(frozen=True)

    backend: str
    address: tuple[tuple[str, str], ...]

    @property
    def key(self) -> str:
        """Stable string form, used as the lock key."""
        parts = ",".join(f"{name}={value}" for name, value in self.address)
        return f"{self.backend}:{parts}"

    def __str__(self) -> str:
        return self.key


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_render(v) for v in value) + "]"
    if isinstance(value, dict):
        return "{" + ",".join(f"{k}={_render(value[k])}" for k in sorted(value)) + "}"
    return str(value)


def remote_state_identity(remote_state: RemoteState | None) -> RemoteStateIdentity | None:
    """Derive the identity of a backend descriptor.

    Returns None for modules without remote state and for local
    backends; those are not locked.

    Raises:
        RemoteStateError: A known remote backend sets none of its
            address parameters, or an unknown backend has no
            non-operational parameters at all.
    """
    if remote_state is None:
        return None

    backend = remote_state.backend.strip().lower()
    if backend in LOCAL_BACKENDS:
        return None

    config = remote_state.config
    if backend in ADDRESS_PARAMS:
        names = [n for n in ADDRESS_PARAMS[backend] if config.get(n) not in (None, "")]
    else:
        names = sorted(n for n in config if n not in OPERATIONAL_PARAMS)

    if not names:
        raise RemoteStateError(
            f"remote_state backend '{backend}' does not set any parameter "
            "that identifies a state object"
        )

    address = tuple((name, _render(config[name])) for name in sorted(names))
    return RemoteStateIdentity(backend=backend, address=address)


def identity_for(module: Module) -> RemoteStateIdentity | None:
    """Identity of the state a module mutates, or None if unlocked."""
    return remote_state_identity(module.remote_state)


def group_by_identity(modules: list[Module]) -> dict[str, list[str]]:
    """Map lock key → module paths, for identities shared by 2+ modules.

    Unparseable backends are ignored here; they surface when the module
    runs.
    """
    groups: dict[str, list[str]] = {}
    for module in modules:
        try:
            identity = identity_for(module)
        except RemoteStateError:
            continue
        if identity is not None:
            groups.setdefault(identity.key, []).append(module.path)
    return {key: sorted(paths) for key, paths in groups.items() if len(paths) > 1}
