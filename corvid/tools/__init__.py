"""Built-in tools."""

from __future__ import annotations

from pathlib import Path

from corvid.tools.base import BaseTool, ToolConfirmation, ToolResult
from corvid.tools.filesystem import ListDirectoryTool, ReadFileTool, WriteFileTool
from corvid.tools.registry import ToolRegistry
from corvid.tools.shell import RunShellCommandTool

__all__ = [
    "BaseTool",
    "ToolConfirmation",
    "ToolResult",
    "ToolRegistry",
    "ListDirectoryTool",
    "ReadFileTool",
    "WriteFileTool",
    "RunShellCommandTool",
    "build_default_tools",
]


def build_default_tools(root: str | Path | None = None) -> ToolRegistry:
    return ToolRegistry(
        [
            ListDirectoryTool(root),
            ReadFileTool(root),
            WriteFileTool(root),
            RunShellCommandTool(root),
        ]
    )
