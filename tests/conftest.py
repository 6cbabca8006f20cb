"""
Shared test fixtures and configuration.
"""

import logging
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest

from spin.core.engine.graph import DependencyGraph, build_graph
from spin.core.models.config import ModuleConfig, RemoteState
from spin.core.models.module import Module, RunOptions

INFRA = "/infra"


def _module(
    name: str,
    deps: list[str] | None = None,
    state: dict | None = None,
    load_error: str | None = None,
) -> Module:
    path = f"{INFRA}/{name}"
    config = None
    if load_error is None:
        config = ModuleConfig(
            dependencies=[f"../{d}" for d in deps or []],
            remote_state=RemoteState(**state) if state else None,
        )
    return Module(
        path=path,
        config=config,
        load_error=load_error,
        options=RunOptions(working_dir=path, tool_args=("plan",)),
    )


@pytest.fixture
def make_module() -> Callable[..., Module]:
    """Build a Module under /infra with ``../<dep>`` style dependencies."""
    return _module


@pytest.fixture
def make_graph() -> Callable[..., DependencyGraph]:
    """Build a validated graph from ``{name: [dep names]}``.

    ``states`` maps a name to a remote_state dict; ``broken`` names
    modules whose configuration failed to load.
    """

    def _make(
        deps: dict[str, list[str]],
        states: dict[str, dict] | None = None,
        broken: dict[str, str] | None = None,
    ) -> DependencyGraph:
        states = states or {}
        broken = broken or {}
        modules = {}
        for name, names in deps.items():
            module = _module(name, names, states.get(name), broken.get(name))
            modules[module.path] = module
        return build_graph(modules)

    return _make


@pytest.fixture
def module_tree(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    """Write ``{relative dir: spin.yml content}`` under a temp root."""

    def _write(layout: dict[str, str]) -> Path:
        root = tmp_path / "live"
        root.mkdir(exist_ok=True)
        for rel, content in layout.items():
            module_dir = root / rel
            module_dir.mkdir(parents=True, exist_ok=True)
            (module_dir / "spin.yml").write_text(textwrap.dedent(content))
        return root

    return _write


@pytest.fixture
def three_tier(module_tree: Callable[[dict[str, str]], Path]) -> Path:
    """net ← db ← app, each with its own S3 state."""
    return module_tree({
        "net": """\
            remote_state:
              backend: s3
              config: {bucket: acme-state, key: net/terraform.tfstate, region: us-east-1}
        """,
        "db": """\
            dependencies:
              paths: [../net]
            remote_state:
              backend: s3
              config: {bucket: acme-state, key: db/terraform.tfstate, region: us-east-1}
        """,
        "app": """\
            dependencies:
              - ../net
              - ../db
            remote_state:
              backend: s3
              config: {bucket: acme-state, key: app/terraform.tfstate, region: us-east-1}
        """,
    })


@pytest.fixture(autouse=True)
def _restore_logging():
    """CLI tests reconfigure the root logger; put it back afterwards."""
    root = logging.getLogger()
    tool = logging.getLogger("spin.tool")
    saved = (root.level, list(root.handlers), tool.level, list(tool.handlers))
    yield
    root.setLevel(saved[0])
    root.handlers[:] = saved[1]
    tool.setLevel(saved[2])
    tool.handlers[:] = saved[3]
