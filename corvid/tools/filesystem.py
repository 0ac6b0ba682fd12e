"""File system tools: list a directory, read a file, write a file."""

from __future__ import annotations

import asyncio
import base64
import difflib
import mimetypes
from pathlib import Path
from typing import Any

from corvid.core.cancel import CancelToken
from corvid.tools.base import BaseTool, ToolConfirmation, ToolResult
from corvid.utils.logging import get_logger

log = get_logger(__name__)

_MAX_READ_LINES = 2000
# Sent to the model as inline data rather than decoded text.
_INLINE_MIME_PREFIXES = ("image/", "audio/", "video/", "application/pdf")


class _RootedTool(BaseTool):
    """Resolves relative paths against a root and refuses paths outside it."""

    path_param = "path"

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root or Path.cwd()).resolve()

    def _resolve(self, value: str) -> Path:
        path = Path(value)
        if not path.is_absolute():
            path = self._root / path
        return path.resolve()

    def _display_path(self, path: Path) -> str:
        try:
            return str(path.relative_to(self._root)) or "."
        except ValueError:
            return str(path)

    def validate_params(self, params: dict[str, Any]) -> str | None:
        error = super().validate_params(params)
        if error:
            return error
        path = self._resolve(params[self.path_param])
        if path != self._root and self._root not in path.parents:
            return f"Path must be within the root directory ({self._root}): {params[self.path_param]}"
        return None


class ListDirectoryTool(_RootedTool):
    @property
    def name(self) -> str:
        return "list_directory"

    @property
    def description(self) -> str:
        return "List the files and subdirectories of a directory. Directories end with '/'."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory to list."},
            },
            "required": ["path"],
        }

    def get_description(self, params: dict[str, Any]) -> str:
        return f"List {params.get('path', '.')}"

    async def execute(self, params: dict[str, Any], cancel_token: CancelToken) -> ToolResult:
        cancel_token.raise_if_cancelled()
        path = self._resolve(params["path"])
        if not path.is_dir():
            message = f"Directory not found: {params['path']}"
            return ToolResult(success=False, llm_content=f"Error: {message}", error=message)

        entries = await asyncio.to_thread(lambda: sorted(path.iterdir(), key=lambda p: p.name))
        dirs = [f"{p.name}/" for p in entries if p.is_dir()]
        files = [p.name for p in entries if not p.is_dir()]
        listing = "\n".join(dirs + files)
        shown = self._display_path(path)
        return ToolResult(
            success=True,
            llm_content=f"Directory listing for {shown}:\n{listing}" if listing else f"Directory {shown} is empty.",
            display=f"Listed {len(entries)} item(s).",
        )


class ReadFileTool(_RootedTool):
    path_param = "file_path"

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return (
            "Read a file. Text files are returned as text, optionally a window of "
            "lines; images and PDFs are returned as inline data."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "File to read."},
                "offset": {"type": "integer", "description": "0-based line to start at."},
                "limit": {"type": "integer", "description": "Maximum number of lines."},
            },
            "required": ["file_path"],
        }

    def get_description(self, params: dict[str, Any]) -> str:
        return f"Read {params.get('file_path', '')}"

    async def execute(self, params: dict[str, Any], cancel_token: CancelToken) -> ToolResult:
        cancel_token.raise_if_cancelled()
        path = self._resolve(params["file_path"])
        if not path.is_file():
            message = f"File not found: {params['file_path']}"
            return ToolResult(success=False, llm_content=f"Error: {message}", error=message)

        mime, _ = mimetypes.guess_type(path.name)
        if mime and mime.startswith(_INLINE_MIME_PREFIXES):
            data = await asyncio.to_thread(path.read_bytes)
            return ToolResult(
                success=True,
                llm_content={
                    "inlineData": {"mimeType": mime, "data": base64.b64encode(data).decode("ascii")}
                },
                display=f"Read {mime} file {self._display_path(path)}.",
            )

        text = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
        lines = text.splitlines()
        offset = max(params.get("offset", 0), 0)
        limit = params.get("limit") or _MAX_READ_LINES
        window = lines[offset : offset + limit]
        content = "\n".join(window)
        if offset or offset + limit < len(lines):
            content = (
                f"[Showing lines {offset + 1}-{offset + len(window)} of {len(lines)}]\n{content}"
            )
        return ToolResult(
            success=True,
            llm_content=content,
            display=f"Read {len(window)} line(s) from {self._display_path(path)}.",
        )


class WriteFileTool(_RootedTool):
    path_param = "file_path"

    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Write content to a file, creating it and any parent directories if needed."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "File to write."},
                "content": {"type": "string", "description": "Full new file content."},
            },
            "required": ["file_path", "content"],
        }

    @property
    def mutates_filesystem(self) -> bool:
        return True

    def get_description(self, params: dict[str, Any]) -> str:
        return f"Write {params.get('file_path', '')}"

    def _diff(self, path: Path, new: str) -> str:
        old = path.read_text(encoding="utf-8", errors="replace") if path.is_file() else ""
        shown = self._display_path(path)
        return "".join(
            difflib.unified_diff(
                old.splitlines(keepends=True),
                new.splitlines(keepends=True),
                fromfile=f"{shown} (current)",
                tofile=f"{shown} (proposed)",
            )
        )

    async def should_confirm_execute(
        self, params: dict[str, Any], cancel_token: CancelToken
    ) -> ToolConfirmation | None:
        path = self._resolve(params["file_path"])
        return ToolConfirmation(
            kind="edit",
            title=f"Confirm Write: {self._display_path(path)}",
            details=self._diff(path, params["content"]),
            approval_key=self.name,
        )

    async def execute(self, params: dict[str, Any], cancel_token: CancelToken) -> ToolResult:
        cancel_token.raise_if_cancelled()
        path = self._resolve(params["file_path"])
        existed = path.exists()
        diff = self._diff(path, params["content"])

        def write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(params["content"], encoding="utf-8")

        await asyncio.to_thread(write)
        log.info("file_written", path=str(path), created=not existed)
        verb = "overwrote" if existed else "created and wrote new file"
        return ToolResult(
            success=True,
            llm_content=f"Successfully {verb}: {path}",
            display=diff,
        )
