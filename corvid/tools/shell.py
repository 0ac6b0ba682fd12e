"""Shell command execution tool."""

from __future__ import annotations

import asyncio
import re
import shlex
from pathlib import Path
from typing import Any

from corvid.core.cancel import CancelToken
from corvid.errors import CancellationError
from corvid.tools.base import BaseTool, ToolConfirmation, ToolResult
from corvid.utils.logging import get_logger
from corvid.utils.platform import (
    get_platform,
    kill_process_group,
    process_group_kwargs,
    shell_argv,
)

log = get_logger(__name__)

# Patterns that are always blocked
_BLOCKED_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\brm\s+-rf\s+/\s*$", re.IGNORECASE),
    re.compile(r"\bmkfs\b", re.IGNORECASE),
    re.compile(r"\bdd\s+.*of=/dev/", re.IGNORECASE),
    re.compile(r">\s*/dev/sd[a-z]", re.IGNORECASE),
    re.compile(r":\(\)\s*\{\s*:\|:&\s*\};:"),  # fork bomb
]

_DEFAULT_TIMEOUT = 30
_MAX_TIMEOUT = 300
_MAX_OUTPUT = 4000


def root_command(command: str) -> str:
    """First word of a command line, e.g. ``git`` for ``git status -s``."""
    try:
        words = shlex.split(command)
    except ValueError:
        words = command.split()
    return Path(words[0]).name if words else ""


def _truncate(text: str) -> str:
    if len(text) > _MAX_OUTPUT:
        return text[:_MAX_OUTPUT] + f"\n... (truncated, {len(text)} total chars)"
    return text


class RunShellCommandTool(BaseTool):
    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root or Path.cwd()).resolve()

    @property
    def name(self) -> str:
        return "run_shell_command"

    @property
    def description(self) -> str:
        return (
            "Execute a shell command. "
            "Returns stdout, stderr, and exit code. "
            "Use for builds, tests, git and other command-line tasks."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The shell command to execute.",
                },
                "directory": {
                    "type": "string",
                    "description": "Directory to run in, relative to the project root.",
                },
                "timeout": {
                    "type": "integer",
                    "description": f"Timeout in seconds (default {_DEFAULT_TIMEOUT}, max {_MAX_TIMEOUT}).",
                },
            },
            "required": ["command"],
        }

    def validate_params(self, params: dict[str, Any]) -> str | None:
        error = super().validate_params(params)
        if error:
            return error
        command = params["command"]
        if not command.strip():
            return "Command cannot be empty."
        for pattern in _BLOCKED_PATTERNS:
            if pattern.search(command):
                log.warning("blocked_command", command=command)
                return f"Command blocked by safety filter: {command}"
        directory = params.get("directory")
        if directory:
            cwd = self._resolve_dir(directory)
            if cwd != self._root and self._root not in cwd.parents:
                return f"Directory must be within the project root ({self._root}): {directory}"
        return None

    def get_description(self, params: dict[str, Any]) -> str:
        description = params.get("command", "")
        if params.get("directory"):
            description += f" [in {params['directory']}]"
        return description

    async def should_confirm_execute(
        self, params: dict[str, Any], cancel_token: CancelToken
    ) -> ToolConfirmation | None:
        root = root_command(params["command"])
        return ToolConfirmation(
            kind="exec",
            title="Confirm Shell Command",
            details=params["command"],
            approval_key=f"{self.name}:{root}",
        )

    async def execute(self, params: dict[str, Any], cancel_token: CancelToken) -> ToolResult:
        command: str = params["command"]
        timeout = min(params.get("timeout") or _DEFAULT_TIMEOUT, _MAX_TIMEOUT)
        cwd = self._resolve_dir(params.get("directory"))
        args = shell_argv(command)
        if not cwd.is_dir():
            message = f"Directory not found: {params['directory']}"
            return ToolResult(success=False, llm_content=f"Error: {message}", error=message)

        log.info("shell_exec", command=command, timeout=timeout, cwd=str(cwd))

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                **process_group_kwargs(),
            )
        except FileNotFoundError:
            message = f"Shell not found: {args[0]}"
            return ToolResult(success=False, llm_content=f"Error: {message}", error=message)

        try:
            stdout, stderr = await asyncio.wait_for(
                cancel_token.race(proc.communicate()), timeout=timeout
            )
        except asyncio.TimeoutError:
            await self._kill(proc)
            message = f"Command timed out after {timeout}s"
            return ToolResult(success=False, llm_content=f"Error: {message}", error=message)
        except (CancellationError, asyncio.CancelledError):
            # Either the token fired or the scheduler cancelled this task.
            await self._kill(proc)
            log.info("shell_cancelled", command=command, pid=proc.pid)
            raise

        stdout_str = _truncate(stdout.decode("utf-8", errors="replace").strip())
        stderr_str = _truncate(stderr.decode("utf-8", errors="replace").strip())

        success = proc.returncode == 0
        output_parts = [f"Command: {command}", f"Directory: {self._display_dir(cwd)}"]
        output_parts.append(f"Stdout: {stdout_str or '(empty)'}")
        output_parts.append(f"Stderr: {stderr_str or '(empty)'}")
        output_parts.append(f"Exit code: {proc.returncode}")

        return ToolResult(
            success=success,
            llm_content="\n".join(output_parts),
            display=stdout_str or stderr_str,
            error="" if success else (stderr_str or f"Exit code: {proc.returncode}"),
        )

    def _resolve_dir(self, directory: str | None) -> Path:
        return (self._root / directory).resolve() if directory else self._root

    def _display_dir(self, cwd: Path) -> str:
        try:
            return str(cwd.relative_to(self._root)) or "."
        except ValueError:
            return str(cwd)

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        # Killing only the shell leaves its children holding the pipes open.
        if get_platform() == "windows":
            if proc.returncode is None:
                proc.kill()
        else:
            kill_process_group(proc.pid)
        await proc.wait()
