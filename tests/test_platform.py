"""Tests for per-user directories and shell process helpers."""

import subprocess
import sys
from pathlib import Path

import pytest

from corvid.utils import platform
from corvid.utils.platform import (
    get_config_dir,
    get_data_dir,
    kill_process_group,
    process_group_kwargs,
    shell_argv,
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX process groups")


@pytest.fixture
def linux(monkeypatch):
    monkeypatch.setattr(platform, "get_platform", lambda: "linux")
    for name in ("CORVID_CONFIG_DIR", "CORVID_DATA_DIR", "XDG_CONFIG_HOME", "XDG_DATA_HOME"):
        monkeypatch.delenv(name, raising=False)


class TestDirectories:
    def test_env_overrides_win(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CORVID_CONFIG_DIR", str(tmp_path / "cfg"))
        monkeypatch.setenv("CORVID_DATA_DIR", str(tmp_path / "data"))
        assert get_config_dir() == tmp_path / "cfg"
        assert get_data_dir() == tmp_path / "data"

    def test_xdg_locations(self, linux, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xc"))
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xd"))
        assert get_config_dir() == tmp_path / "xc" / "corvid"
        assert get_data_dir() == tmp_path / "xd" / "corvid"

    def test_home_fallbacks(self, linux):
        assert get_config_dir() == Path.home() / ".config" / "corvid"
        assert get_data_dir() == Path.home() / ".local" / "share" / "corvid"

    def test_windows_appdata(self, monkeypatch, tmp_path):
        monkeypatch.setattr(platform, "get_platform", lambda: "windows")
        monkeypatch.delenv("CORVID_CONFIG_DIR", raising=False)
        monkeypatch.delenv("CORVID_DATA_DIR", raising=False)
        monkeypatch.setenv("APPDATA", str(tmp_path / "Roaming"))
        monkeypatch.setenv("LOCALAPPDATA", str(tmp_path / "Local"))
        assert get_config_dir() == tmp_path / "Roaming" / "corvid"
        assert get_data_dir() == tmp_path / "Local" / "corvid"


class TestShellHelpers:
    def test_posix_argv_uses_login_shell(self, linux, monkeypatch):
        monkeypatch.setenv("SHELL", "/bin/zsh")
        assert shell_argv("ls -la") == ["/bin/zsh", "-c", "ls -la"]
        monkeypatch.delenv("SHELL")
        assert shell_argv("ls") == ["/bin/bash", "-c", "ls"]

    def test_windows_argv(self, monkeypatch):
        monkeypatch.setattr(platform, "get_platform", lambda: "windows")
        assert shell_argv("dir") == ["powershell", "-NoProfile", "-Command", "dir"]

    def test_posix_starts_new_session(self, linux):
        assert process_group_kwargs() == {"start_new_session": True}

    @posix_only
    def test_kill_process_group(self):
        proc = subprocess.Popen(["sleep", "30"], start_new_session=True)
        try:
            assert kill_process_group(proc.pid) is True
            assert proc.wait(timeout=5) < 0
        finally:
            if proc.poll() is None:
                proc.kill()
        # Reaped, so the group no longer exists.
        assert kill_process_group(proc.pid) is False
