"""Async file tools: read, write, edit, list and search."""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Any

from newapi_chat.tools.base import Tool, ToolParameter, ToolResult

_MAX_READ_BYTES = 10_000_000
_MAX_SEARCH_RESULTS = 50


class ReadFileTool(Tool):
    """Read a file, optionally limited to a 1-based line range."""

    name = "read_file"
    description = (
        "Read the contents of a local file. Use it to inspect, analyse or "
        "refactor code."
    )
    parameters = [
        ToolParameter(
            name="path",
            type="string",
            description="Relative or absolute path of the file",
        ),
        ToolParameter(
            name="start_line",
            type="integer",
            description="First line to return (1-based)",
            required=False,
        ),
        ToolParameter(
            name="end_line",
            type="integer",
            description="Last line to return (inclusive)",
            required=False,
        ),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        path = kwargs.get("path", "")
        start_line = kwargs.get("start_line") or 1
        end_line = kwargs.get("end_line")

        if not path:
            return ToolResult(success=False, output="", error="No path provided")

        def _read() -> ToolResult:
            p = Path(path).expanduser().resolve()
            if not p.exists():
                return ToolResult(success=False, output="", error=f"File not found: {p}")
            if not p.is_file():
                return ToolResult(success=False, output="", error=f"Not a file: {p}")

            size = p.stat().st_size
            if size > _MAX_READ_BYTES:
                return ToolResult(
                    success=False,
                    output="",
                    error=f"File too large ({size} bytes, max 10MB)",
                )

            lines = p.read_text(encoding="utf-8", errors="replace").splitlines()
            first = max(int(start_line), 1)
            last = int(end_line) if end_line else len(lines)
            numbered = [
                f"{i:>5}\t{line}"
                for i, line in enumerate(lines[first - 1:last], start=first)
            ]
            return ToolResult(
                success=True,
                output="\n".join(numbered),
                metadata={"lines": len(lines)},
            )

        return await asyncio.to_thread(_read)


class WriteFileTool(Tool):
    """Write content to a file, creating parent directories."""

    name = "write_file"
    description = (
        "Write content to a local file. Creates the file if it doesn't "
        "exist and overwrites it if it does."
    )
    parameters = [
        ToolParameter(
            name="path",
            type="string",
            description="Relative or absolute path of the file",
        ),
        ToolParameter(
            name="content",
            type="string",
            description="Content to write",
        ),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        path = kwargs.get("path", "")
        content = kwargs.get("content", "")

        if not path:
            return ToolResult(success=False, output="", error="No path provided")

        def _write() -> ToolResult:
            p = Path(path).expanduser().resolve()
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(content, encoding="utf-8")
            return ToolResult(success=True, output=f"File written to {p}")

        return await asyncio.to_thread(_write)


def _normalize_ws(line: str) -> str:
    return re.sub(r"\s+", " ", line.strip())


class EditFileTool(Tool):
    """Replace one snippet of a file with another."""

    name = "edit_file"
    description = (
        "Modify part of a file by replacing an existing snippet "
        "(old_content) with new_content. Prefer this over rewriting the "
        "whole file."
    )
    parameters = [
        ToolParameter(
            name="path",
            type="string",
            description="Path of the file to edit",
        ),
        ToolParameter(
            name="old_content",
            type="string",
            description="Existing snippet in the file to replace",
        ),
        ToolParameter(
            name="new_content",
            type="string",
            description="Replacement snippet",
        ),
    ]

    @staticmethod
    def _fuzzy_find(text: str, old: str) -> tuple[int, int] | int | None:
        """Find *old* in *text* comparing lines with whitespace collapsed.

        Returns ``(start, end)`` offsets for a single match, the match count
        when ambiguous, or ``None``.
        """
        old_lines = [_normalize_ws(line) for line in old.splitlines()]
        if not old_lines:
            return None

        text_lines = text.splitlines(keepends=True)
        norm_lines = [_normalize_ws(line) for line in text_lines]
        window = len(old_lines)
        matches: list[tuple[int, int]] = []
        for i in range(len(norm_lines) - window + 1):
            if norm_lines[i:i + window] == old_lines:
                start = sum(len(line) for line in text_lines[:i])
                end = start + sum(len(line) for line in text_lines[i:i + window])
                matches.append((start, end))

        if len(matches) == 1:
            return matches[0]
        return len(matches) or None

    async def execute(self, **kwargs: Any) -> ToolResult:
        path = kwargs.get("path", "")
        old = kwargs.get("old_content", "")
        new = kwargs.get("new_content", "")

        if not path:
            return ToolResult(success=False, output="", error="No path provided")
        if not old:
            return ToolResult(success=False, output="", error="No old_content provided")

        def _edit() -> ToolResult:
            p = Path(path).expanduser().resolve()
            if not p.exists():
                return ToolResult(success=False, output="", error=f"File not found: {p}")

            text = p.read_text(encoding="utf-8")
            if old in text:
                p.write_text(text.replace(old, new, 1), encoding="utf-8")
                return ToolResult(success=True, output=f"Edit applied to {p}")

            span = self._fuzzy_find(text, old)
            if isinstance(span, tuple):
                p.write_text(text[:span[0]] + new + text[span[1]:], encoding="utf-8")
                return ToolResult(
                    success=True,
                    output=f"Edit applied to {p} (matched with whitespace normalization)",
                )
            if isinstance(span, int):
                return ToolResult(
                    success=False,
                    output="",
                    error=f"old_content found {span} times (with whitespace "
                          f"normalization). Provide more context to make it unique.",
                )
            return ToolResult(
                success=False,
                output="",
                error=f"old_content not found in {path}. Please ensure an exact match.",
            )

        return await asyncio.to_thread(_edit)


class ListDirectoryTool(Tool):
    """List directory contents."""

    name = "list_dir"
    description = "List files and sub-directories of a directory."
    parameters = [
        ToolParameter(
            name="path",
            type="string",
            description="Directory path, defaults to the current directory",
            required=False,
            default=".",
        ),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        path = kwargs.get("path") or "."

        def _list() -> ToolResult:
            p = Path(path).expanduser().resolve()
            if not p.exists():
                return ToolResult(success=False, output="", error=f"Directory not found: {p}")
            if not p.is_dir():
                return ToolResult(success=False, output="", error=f"Not a directory: {p}")

            lines: list[str] = []
            for item in sorted(p.iterdir())[:500]:
                if item.is_dir():
                    lines.append(f"d {item.name}")
                    continue
                s = item.stat().st_size
                if s < 1024:
                    size = f"{s}B"
                elif s < 1024 * 1024:
                    size = f"{s // 1024}KB"
                else:
                    size = f"{s // (1024 * 1024)}MB"
                lines.append(f"f {item.name} ({size})")
            return ToolResult(success=True, output="\n".join(lines))

        return await asyncio.to_thread(_list)


class SearchFilesTool(Tool):
    """Case-insensitive keyword search through a directory tree."""

    name = "search_files"
    description = (
        "Search the project for files containing a keyword. Returns "
        "matching file paths with line numbers."
    )
    parameters = [
        ToolParameter(
            name="query",
            type="string",
            description="Keyword to look for (case-insensitive)",
        ),
        ToolParameter(
            name="path",
            type="string",
            description="Directory to search, defaults to the current directory",
            required=False,
            default=".",
        ),
    ]

    _SKIP_DIRS = {
        "node_modules", "__pycache__", "venv", "dist", "build", "target",
    }
    _SKIP_SUFFIXES = {".jpg", ".png", ".exe", ".bin", ".lock", ".pdf"}

    async def execute(self, **kwargs: Any) -> ToolResult:
        query = (kwargs.get("query") or "").lower()
        path = kwargs.get("path") or "."

        if not query:
            return ToolResult(success=False, output="", error="No query provided")

        def _search() -> ToolResult:
            root = Path(path).expanduser().resolve()
            if not root.exists():
                return ToolResult(success=False, output="", error=f"Path not found: {root}")

            matches: list[str] = []
            for fp in sorted(root.rglob("*")):
                rel = fp.relative_to(root)
                if any(
                    part.startswith(".") or part in self._SKIP_DIRS
                    for part in rel.parts
                ):
                    continue
                if not fp.is_file() or fp.suffix.lower() in self._SKIP_SUFFIXES:
                    continue
                try:
                    if fp.stat().st_size > 1_000_000:
                        continue
                    text = fp.read_text(encoding="utf-8", errors="replace")
                except OSError:
                    continue
                for i, line in enumerate(text.splitlines(), 1):
                    if query in line.lower():
                        matches.append(f"{rel}:{i}: {line.strip()[:100]}")

            if not matches:
                return ToolResult(success=True, output="No matches found.")
            shown = "\n".join(matches[:_MAX_SEARCH_RESULTS])
            extra = len(matches) - _MAX_SEARCH_RESULTS
            more = f"\n...and {extra} more" if extra > 0 else ""
            return ToolResult(
                success=True,
                output=f"Found {len(matches)} matches:\n{shown}{more}",
            )

        return await asyncio.to_thread(_search)
