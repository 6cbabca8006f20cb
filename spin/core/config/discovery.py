"""
Module discovery — find every module under a root and bind its options.

A module is any directory containing the configuration file
(spin.yml by default). Discovery produces an immutable snapshot,
path → Module, that is passed explicitly through graph building,
planning and execution. Nothing is discovered after that.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from types import MappingProxyType

from spin.core.config.loader import load_module_config
from spin.core.config.settings import Settings
from spin.core.engine.graph import clean_path
from spin.core.errors import ConfigError, ModuleLoadError
from spin.core.models.module import Module, RunOptions

logger = logging.getLogger(__name__)

_SKIP_DIRS = frozenset({
    ".git", ".terraform", ".terragrunt-cache", ".spin",
    ".venv", "venv", "node_modules", "__pycache__",
})


def find_config_files(root: Path, filename: str) -> list[Path]:
    """All configuration files below ``root``, in sorted walk order."""
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
        if filename in filenames:
            found.append(Path(dirpath) / filename)
    return found


def _relative(path: str, root: str) -> str:
    rel = os.path.relpath(path, root)
    return "." if rel == os.curdir else rel.replace(os.sep, "/")


def _matches(rel: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch.fnmatch(rel, p.rstrip("/")) for p in patterns)


def discover_modules(
    root: Path | str,
    settings: Settings | None = None,
    tool_args: Sequence[str] = (),
    non_interactive: bool = True,
    include: Sequence[str] = (),
    exclude: Sequence[str] = (),
    env: Mapping[str, str] | None = None,
) -> Mapping[str, Module]:
    """Discover and bind all modules under ``root``.

    Args:
        root: Directory to scan.
        settings: Effective settings (config filename, tool, timeout).
        tool_args: Arguments forwarded to the tool in every module.
        non_interactive: Run the tool without prompting for input.
        include: Glob patterns (relative to root); when given, only
            matching module directories take part.
        exclude: Glob patterns of module directories to leave out.
        env: Extra environment variables for the tool.

    Returns:
        Read-only mapping of cleaned absolute path → Module. Modules whose
        configuration cannot be parsed are included with ``load_error``
        set and no config.

    Raises:
        ConfigError: ``root`` is not a directory.
    """
    settings = settings or Settings()
    root_path = clean_path(root)
    if not os.path.isdir(root_path):
        raise ConfigError(f"Not a directory: {root_path}")

    modules: dict[str, Module] = {}
    for config_file in find_config_files(Path(root_path), settings.config_filename):
        path = clean_path(config_file.parent)
        rel = _relative(path, root_path)

        if include and not _matches(rel, include):
            logger.debug("Module %s not included, skipping", rel)
            continue
        if exclude and _matches(rel, exclude):
            logger.debug("Module %s excluded, skipping", rel)
            continue

        config = None
        load_error = None
        try:
            config = load_module_config(config_file)
        except ModuleLoadError as e:
            load_error = e.reason
            logger.warning("Module %s cannot be loaded: %s", rel, e.reason)

        extra_args = tuple(config.extra_args) if config else ()
        options = RunOptions(
            working_dir=path,
            config_path=str(config_file),
            tool=settings.tool,
            tool_args=tuple(tool_args) + extra_args,
            non_interactive=non_interactive,
            env=dict(env or {}),
            log_prefix=f"[{rel}] ",
            timeout=settings.tool_timeout,
        )
        modules[path] = Module(
            path=path,
            config=config,
            load_error=load_error,
            options=options,
        )

    logger.info("Discovered %d modules under %s", len(modules), root_path)
    return MappingProxyType(modules)
