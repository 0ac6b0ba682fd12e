"""System prompt construction with dynamic tool injection."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from corvid.tools.base import BaseTool


_BASE_PROMPT = """\
You are corvid, an AI assistant helping with software development tasks in a terminal.

Current working directory: {cwd}

Guidelines:
- Be concise. Prefer showing the relevant code or command output over long explanations.
- Use the tools to discover files instead of asking the user for paths. \
Relative paths are resolved against the current working directory.
- When the user asks about "this directory", list "{cwd}" with list_directory.
- Read a file before changing it, and write the complete new content when you do.
- Explain briefly what a shell command will do before running it.
- If you're unsure about something destructive, ask for confirmation.
"""


def build_system_prompt(tools: Iterable[BaseTool], cwd: str | Path | None = None) -> str:
    """Build the full system prompt with tool descriptions."""
    parts = [_BASE_PROMPT.format(cwd=cwd or Path.cwd())]

    tools = list(tools)
    if tools:
        parts.append("Available tools:")
        for tool in tools:
            parts.append(f"- **{tool.name}**: {tool.description}")

    return "\n".join(parts)
