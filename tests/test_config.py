"""Tests for the configuration module."""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import pytest

from agentterm.config import (
    Config,
    ConfigWatcher,
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
)
from agentterm.config.merge import deep_merge, merge_configs
from agentterm.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)


class TestDeepMerge:
    """Test the deep merge algorithm."""

    def test_simple_override(self) -> None:
        """Test that override values replace base values."""
        base = {"a": 1, "b": 2}
        override = {"b": 3, "c": 4}
        result = deep_merge(base, override)
        assert result == {"a": 1, "b": 3, "c": 4}

    def test_nested_merge(self) -> None:
        """Test that nested dicts are recursively merged."""
        base = {"terminal": {"shell": "/bin/bash", "abort_grace": 5.0}}
        override = {"terminal": {"abort_grace": 1.0}}
        result = deep_merge(base, override)
        assert result["terminal"]["shell"] == "/bin/bash"
        assert result["terminal"]["abort_grace"] == 1.0

    def test_none_does_not_override(self) -> None:
        """Test that None values in override don't replace base values."""
        result = deep_merge({"a": 1}, {"a": None})
        assert result["a"] == 1

    def test_list_replaced_not_merged(self) -> None:
        """Test that lists are replaced, not concatenated."""
        base = {"background_patterns": ["npm run dev*"]}
        override = {"background_patterns": ["make watch"]}
        result = deep_merge(base, override)
        assert result["background_patterns"] == ["make watch"]

    def test_inputs_not_modified(self) -> None:
        base = {"a": {"b": 1}}
        deep_merge(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}

    def test_merge_configs_multiple(self) -> None:
        """Test merging multiple configs in order."""
        result = merge_configs({"a": 1, "b": 2}, None, {"b": 3}, {}, {"c": 4})
        assert result == {"a": 1, "b": 3, "c": 4}


class TestConfigPaths:
    """Test platform-aware path resolution."""

    def test_windows_system_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test system config path on Windows."""
        monkeypatch.setattr(sys, "platform", "win32")
        monkeypatch.setenv("PROGRAMDATA", "C:\\ProgramData")

        path = get_system_config_path()
        assert path is not None
        assert "ProgramData" in str(path)
        assert "agentterm" in str(path)
        assert "config.yaml" in str(path)

    def test_windows_user_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test user config path on Windows."""
        monkeypatch.setattr(sys, "platform", "win32")
        monkeypatch.setenv("APPDATA", "C:\\Users\\Test\\AppData\\Roaming")

        path = get_user_config_path()
        assert path is not None
        assert "AppData" in str(path)
        assert "agentterm" in str(path)

    def test_unix_system_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test system config path on Unix."""
        monkeypatch.setattr(sys, "platform", "linux")

        path = get_system_config_path()
        assert path == Path("/etc/agentterm/config.yaml")

    def test_unix_user_path_xdg(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test user config path respects XDG_CONFIG_HOME."""
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.setenv("XDG_CONFIG_HOME", "/home/test/.config-custom")

        path = get_user_config_path()
        assert path is not None
        assert ".config-custom" in str(path)

    def test_project_config_path(self) -> None:
        """Test project config path construction."""
        path = get_project_config_path("/home/user/myproject")
        assert path == Path("/home/user/myproject/.agentterm/config.yaml")

    def test_get_config_paths_order(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that config paths are in correct order."""
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)

        paths = get_config_paths(project_root="/project")
        assert len(paths) == 3
        # System should be first (use path parts for cross-platform check)
        assert "etc" in paths[0].parts
        # User should be second
        assert ".agentterm" in str(paths[1]) or ".config" in str(paths[1])
        # Project should be last
        assert "project" in paths[2].parts


class TestConfigLoading:
    """Test configuration loading."""

    @pytest.fixture
    def temp_config_dir(self, tmp_path: Path) -> Path:
        """Create a temporary project config directory."""
        config_dir = tmp_path / ".agentterm"
        config_dir.mkdir()
        return config_dir

    def test_load_terminal_config(self, temp_config_dir: Path) -> None:
        """Test loading a valid YAML config file."""
        (temp_config_dir / "config.yaml").write_text(
            """
terminal:
  provider: integration
  shell: /bin/zsh
  default_timeout: 30
  background_patterns:
    - npm run dev*
    - ""
    - 42
  completion_markers: true
  kill:
    retries: 5
    verify_delay: 1
"""
        )
        config = load_config(project_root=str(temp_config_dir.parent))
        terminal = config.terminal
        assert terminal.provider == "integration"
        assert terminal.shell == "/bin/zsh"
        assert terminal.default_timeout == 30.0
        assert terminal.background_patterns == ["npm run dev*"]
        assert terminal.completion_markers is True
        assert terminal.kill.retries == 5
        assert terminal.kill.verify_delay == 1.0
        # Untouched values keep their defaults
        assert terminal.abort_grace == 5.0
        assert terminal.kill.retry_backoff == 0.5

    def test_bad_values_use_defaults(self, temp_config_dir: Path) -> None:
        (temp_config_dir / "config.yaml").write_text(
            """
terminal:
  abort_grace: soon
  output_line_limit: many
  kill:
    retries: 0
"""
        )
        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.terminal.abort_grace == 5.0
        assert config.terminal.output_line_limit == 500
        assert config.terminal.kill.retries == 1

    def test_user_and_project_layers(self, temp_config_dir: Path) -> None:
        user_dir = Path(os.environ["XDG_CONFIG_HOME"]) / "agentterm"
        user_dir.mkdir(parents=True)
        (user_dir / "config.yaml").write_text("terminal:\n  shell: /bin/bash\n  abort_grace: 2\n")
        (temp_config_dir / "config.yaml").write_text("terminal:\n  abort_grace: 9\n")

        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.terminal.shell == "/bin/bash"
        assert config.terminal.abort_grace == 9.0

    def test_env_overrides_config(self, temp_config_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that environment variables beat config files."""
        (temp_config_dir / "config.yaml").write_text("terminal:\n  shell: /bin/bash\n")
        monkeypatch.setenv("AGENTTERM_SHELL", "/usr/bin/fish")
        monkeypatch.setenv("AGENTTERM_LOG", "/tmp/agentterm.log")

        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.terminal.shell == "/usr/bin/fish"
        assert config.logging.file == "/tmp/agentterm.log"

    def test_invalid_yaml_uses_defaults(self, temp_config_dir: Path) -> None:
        """Test that invalid YAML falls back to defaults."""
        (temp_config_dir / "config.yaml").write_text("invalid: yaml: :")

        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.terminal.provider == "subprocess"

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        """Test that missing config files use defaults."""
        config = load_config(project_root=str(tmp_path))
        assert isinstance(config, Config)
        assert config.terminal.shell is None
        assert config.logging.level is None

    def test_extra_fields_preserved(self, temp_config_dir: Path) -> None:
        """Test that unknown config fields are preserved in extra."""
        (temp_config_dir / "config.yaml").write_text(
            """
custom_field: custom_value
nested:
  field: value
"""
        )
        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.extra["custom_field"] == "custom_value"
        assert config.extra["nested"]["field"] == "value"

    def test_logging_section(self, temp_config_dir: Path) -> None:
        (temp_config_dir / "config.yaml").write_text("logging:\n  level: DEBUG\n  verbose: 3\n")
        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.logging.level == "DEBUG"
        assert config.logging.verbose == 3


class TestConfigCaching:
    """Test global config caching and reload callbacks."""

    def test_global_config_cached(self) -> None:
        first = get_config()
        assert get_config() is first
        assert load_config() is first

    def test_project_config_not_cached(self, tmp_path: Path) -> None:
        global_config = get_config()
        project_config = load_config(project_root=str(tmp_path))
        assert project_config is not global_config
        assert get_config() is global_config

    def test_reset(self) -> None:
        first = get_config()
        reset_config()
        assert get_config() is not first

    def test_reload_callbacks(self, monkeypatch: pytest.MonkeyPatch) -> None:
        seen: list[Config] = []
        unregister = on_config_reload(seen.append)
        try:
            monkeypatch.setenv("AGENTTERM_SHELL", "/bin/dash")
            config = reload_config()
            assert seen == [config]
            assert get_config().terminal.shell == "/bin/dash"
        finally:
            unregister()

        reload_config()
        assert len(seen) == 1

    def test_failing_callback_does_not_stop_reload(self) -> None:
        def broken(config: Config) -> None:
            raise RuntimeError("boom")

        seen: list[Config] = []
        unregister_broken = on_config_reload(broken)
        unregister_seen = on_config_reload(seen.append)
        try:
            reload_config()
            assert len(seen) == 1
        finally:
            unregister_broken()
            unregister_seen()


class TestConfigWatcher:
    """Test change detection of config files."""

    def test_detects_created_modified_deleted(self, tmp_path: Path) -> None:
        watcher = ConfigWatcher(project_root=str(tmp_path))
        assert watcher.check() == []

        config_file = tmp_path / ".agentterm" / "config.yaml"
        config_file.parent.mkdir()
        config_file.write_text("terminal: {}\n")
        assert watcher.check() == [config_file]
        assert watcher.check() == []

        stat = config_file.stat()
        os.utime(config_file, (stat.st_atime, stat.st_mtime + 10))
        assert watcher.check() == [config_file]

        config_file.unlink()
        assert watcher.check() == [config_file]

    @pytest.mark.asyncio
    async def test_poll_loop_reloads(self, tmp_path: Path) -> None:
        seen: list[Config] = []
        unregister = on_config_reload(seen.append)
        config_file = tmp_path / ".agentterm" / "config.yaml"
        config_file.parent.mkdir()
        try:
            async with ConfigWatcher(project_root=str(tmp_path), poll_interval=0.02) as watcher:
                assert watcher.running
                await asyncio.sleep(0.05)
                config_file.write_text("terminal:\n  shell: /bin/ksh\n")
                for _ in range(100):
                    if seen:
                        break
                    await asyncio.sleep(0.02)
            assert not watcher.running
            assert seen[0].terminal.shell == "/bin/ksh"
        finally:
            unregister()
