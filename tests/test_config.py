"""
Tests for configuration — module config loader, discovery, settings.
"""

import textwrap
from pathlib import Path

import pytest

from spin.core.config.discovery import discover_modules, find_config_files
from spin.core.config.loader import load_module_config
from spin.core.config.settings import Settings
from spin.core.errors import ConfigError, ModuleLoadError


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content))
    return path


# ── Module config loader ─────────────────────────────────────────────


class TestLoadModuleConfig:
    def test_full_config(self, tmp_path: Path):
        path = _write(tmp_path / "app" / "spin.yml", """\
            dependencies:
              paths: [../net, ../db]
            remote_state:
              backend: s3
              config:
                bucket: acme
                key: app/terraform.tfstate
            extra_args: [-lock-timeout=5m]
        """)
        config = load_module_config(path)
        assert config.dependencies == ["../net", "../db"]
        assert config.remote_state.backend == "s3"
        assert config.remote_state.config["key"] == "app/terraform.tfstate"
        assert config.extra_args == ["-lock-timeout=5m"]

    def test_empty_file(self, tmp_path: Path):
        config = load_module_config(_write(tmp_path / "spin.yml", ""))
        assert config.dependencies == []
        assert config.remote_state is None

    def test_invalid_yaml(self, tmp_path: Path):
        path = _write(tmp_path / "net" / "spin.yml", "dependencies: [unclosed\n")
        with pytest.raises(ModuleLoadError, match="invalid YAML") as exc:
            load_module_config(path)
        assert exc.value.path == str(tmp_path / "net")

    def test_not_a_mapping(self, tmp_path: Path):
        path = _write(tmp_path / "spin.yml", "- just\n- a list\n")
        with pytest.raises(ModuleLoadError, match="expected a YAML mapping"):
            load_module_config(path)

    def test_wrong_shape(self, tmp_path: Path):
        path = _write(tmp_path / "spin.yml", "remote_state: s3\n")
        with pytest.raises(ModuleLoadError, match="invalid configuration"):
            load_module_config(path)

    def test_remote_state_without_address(self, tmp_path: Path):
        path = _write(tmp_path / "spin.yml", """\
            remote_state:
              backend: s3
              config: {region: us-east-1}
        """)
        with pytest.raises(ModuleLoadError, match="does not set any parameter"):
            load_module_config(path)

    def test_load_error_is_config_error(self):
        assert issubclass(ModuleLoadError, ConfigError)


# ── Discovery ────────────────────────────────────────────────────────


class TestDiscovery:
    def test_discovers_three_tier(self, three_tier: Path):
        modules = discover_modules(three_tier)
        assert sorted(modules) == [
            str(three_tier / "app"),
            str(three_tier / "db"),
            str(three_tier / "net"),
        ]
        app = modules[str(three_tier / "app")]
        assert app.declared_dependencies == ["../net", "../db"]
        assert app.options.working_dir == str(three_tier / "app")
        assert app.options.log_prefix == "[app] "

    def test_snapshot_is_read_only(self, three_tier: Path):
        modules = discover_modules(three_tier)
        with pytest.raises(TypeError):
            modules["x"] = None  # type: ignore[index]

    def test_tool_args_and_extra_args(self, module_tree):
        root = module_tree({"net": "extra_args: [-lock-timeout=5m]\n"})
        settings = Settings(tool="tofu", tool_timeout=30)
        modules = discover_modules(root, settings=settings, tool_args=["plan"])
        options = modules[str(root / "net")].options
        assert options.tool == "tofu"
        assert options.tool_args == ("plan", "-lock-timeout=5m")
        assert options.timeout == 30
        assert options.non_interactive

    def test_broken_module_kept(self, module_tree):
        root = module_tree({"net": "dependencies: [oops\n", "app": "dependencies: [../net]\n"})
        modules = discover_modules(root)
        net = modules[str(root / "net")]
        assert net.config is None
        assert "invalid YAML" in net.load_error
        assert modules[str(root / "app")].loaded

    def test_skips_tool_cache_dirs(self, module_tree):
        root = module_tree({
            "net": "",
            "net/.terraform/modules/vpc": "",
            ".git/hooks": "",
        })
        assert list(discover_modules(root)) == [str(root / "net")]

    def test_nested_modules(self, module_tree):
        root = module_tree({"prod/net": "", "prod/app": "", "stage/net": ""})
        assert len(discover_modules(root)) == 3

    def test_custom_filename(self, tmp_path: Path):
        _write(tmp_path / "net" / "module.yaml", "")
        _write(tmp_path / "db" / "spin.yml", "")
        modules = discover_modules(tmp_path, settings=Settings(config_filename="module.yaml"))
        assert list(modules) == [str(tmp_path / "net")]

    def test_include_and_exclude(self, module_tree):
        root = module_tree({"prod/net": "", "prod/app": "", "stage/net": ""})
        included = discover_modules(root, include=["prod/*"])
        assert sorted(included) == [str(root / "prod/app"), str(root / "prod/net")]
        excluded = discover_modules(root, exclude=["*/app"])
        assert str(root / "prod/app") not in excluded
        assert len(excluded) == 2

    def test_root_must_exist(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Not a directory"):
            discover_modules(tmp_path / "missing")

    def test_find_config_files_sorted(self, module_tree):
        root = module_tree({"b": "", "a": "", "c/d": ""})
        found = find_config_files(root, "spin.yml")
        assert [f.parent.name for f in found] == ["a", "b", "d"]


# ── Settings ─────────────────────────────────────────────────────────


class TestSettings:
    def test_defaults(self):
        s = Settings.load(environ={})
        assert s.config_filename == "spin.yml"
        assert s.tool == "terraform"
        assert s.parallelism == 0
        assert s.effective_lock_backend == "memory"

    def test_env_vars(self):
        s = Settings.load(environ={
            "SPIN_TOOL": "tofu",
            "SPIN_PARALLELISM": "4",
            "SPIN_LOCK_TABLE": "tf-locks",
            "SPIN_LOCK_MAX_ATTEMPTS": "5",
        })
        assert s.tool == "tofu"
        assert s.parallelism == 4
        assert s.effective_lock_backend == "dynamodb"
        assert s.retry_policy.max_attempts == 5

    def test_cli_overrides_env(self):
        s = Settings.load(environ={"SPIN_PARALLELISM": "4"}, parallelism=2)
        assert s.parallelism == 2

    def test_none_override_falls_through(self):
        s = Settings.load(environ={"SPIN_PARALLELISM": "4"}, parallelism=None)
        assert s.parallelism == 4

    def test_empty_env_ignored(self):
        assert Settings.load(environ={"SPIN_TOOL": ""}).tool == "terraform"

    def test_invalid_env_value(self):
        with pytest.raises(ConfigError, match="Invalid settings"):
            Settings.load(environ={"SPIN_PARALLELISM": "many"})

    def test_invalid_backend(self):
        with pytest.raises(ConfigError):
            Settings.load(environ={"SPIN_LOCK_BACKEND": "zookeeper"})

    def test_retry_policy_from_settings(self):
        s = Settings.load(environ={"SPIN_LOCK_RETRY_DELAY": "0.5", "SPIN_LOCK_MAX_RETRY_DELAY": "2"})
        assert s.retry_policy.base_delay == 0.5
        assert s.retry_policy.max_delay == 2.0
