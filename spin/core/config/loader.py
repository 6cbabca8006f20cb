"""
Configuration loader — reads a module's spin.yml into a ModuleConfig.

Reads YAML, validates against the Pydantic schema and returns a typed
config. Any problem is reported as a ModuleLoadError for that one file;
the caller decides what a broken module means for the run.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from spin.core.errors import ModuleLoadError, RemoteStateError
from spin.core.engine.identity import remote_state_identity
from spin.core.models.config import ModuleConfig

logger = logging.getLogger(__name__)


def load_module_config(path: Path) -> ModuleConfig:
    """Load and validate one module configuration file.

    An empty file is a valid module with no dependencies and no remote
    state.

    Raises:
        ModuleLoadError: The file is unreadable, not YAML, has the wrong
            shape, or its remote_state addresses nothing.
    """
    module_dir = str(path.parent)
    logger.debug("Loading module config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ModuleLoadError(module_dir, f"cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ModuleLoadError(module_dir, f"invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ModuleLoadError(
            module_dir,
            f"expected a YAML mapping in {path}, got {type(data).__name__}",
        )

    try:
        config = ModuleConfig.model_validate(data)
    except ValidationError as e:
        raise ModuleLoadError(module_dir, f"invalid configuration in {path}: {e}") from e

    # Validate the backend descriptor now rather than mid-run
    try:
        remote_state_identity(config.remote_state)
    except RemoteStateError as e:
        raise ModuleLoadError(module_dir, str(e)) from e

    return config
