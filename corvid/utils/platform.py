"""Platform detection, per-user directories and shell process handling."""

from __future__ import annotations

import os
import signal
import subprocess
import sys
from pathlib import Path
from typing import Any


def get_platform() -> str:
    if sys.platform == "win32":
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    return "linux"


def get_config_dir() -> Path:
    """Where config.yaml lives. ``CORVID_CONFIG_DIR`` wins over the OS default."""
    env = os.environ.get("CORVID_CONFIG_DIR")
    if env:
        return Path(env)

    platform = get_platform()
    if platform == "windows":
        return Path(os.environ.get("APPDATA") or Path.home() / "AppData" / "Roaming") / "corvid"
    if platform == "macos":
        return Path.home() / "Library" / "Application Support" / "corvid"
    return Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config") / "corvid"


def get_data_dir() -> Path:
    """Where the checkpoint database lives. ``CORVID_DATA_DIR`` wins."""
    env = os.environ.get("CORVID_DATA_DIR")
    if env:
        return Path(env)

    platform = get_platform()
    if platform == "windows":
        return Path(os.environ.get("LOCALAPPDATA") or Path.home() / "AppData" / "Local") / "corvid"
    if platform == "macos":
        return Path.home() / "Library" / "Application Support" / "corvid"
    return Path(os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share") / "corvid"


def shell_argv(command: str) -> list[str]:
    """argv that runs ``command`` through the user's shell."""
    if get_platform() == "windows":
        return ["powershell", "-NoProfile", "-Command", command]
    return [os.environ.get("SHELL") or "/bin/bash", "-c", command]


def process_group_kwargs() -> dict[str, Any]:
    """Subprocess kwargs that make the child lead its own process group, so
    everything it spawns can be killed together."""
    if get_platform() == "windows":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def kill_process_group(pid: int) -> bool:
    """SIGKILL the process group led by ``pid``. False if it was already gone."""
    try:
        os.killpg(pid, signal.SIGKILL)
    except ProcessLookupError:
        return False
    return True
