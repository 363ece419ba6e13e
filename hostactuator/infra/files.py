"""File operations (read, write, edit) confined to the actuator root."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from hostactuator.models.payloads import EditPayload, ReadPayload, WritePayload

logger = logging.getLogger(__name__)

MAX_READ_CHARS = 50 * 1024
MAX_READ_LINES = 2000


class PathOutsideRootError(ValueError):
    """A requested path resolves outside the actuator root."""


@dataclass
class FileOperationResult:
    success: bool
    content: str = ""
    error: str = ""
    lines_read: int = 0
    truncated: bool = False


class FileExecutor:
    """Path-validated file I/O rooted at a single directory."""

    def __init__(self, root: str | Path) -> None:
        self._root = os.path.abspath(os.fspath(root))

    @property
    def root(self) -> str:
        return self._root

    def resolve(self, path: str) -> Path:
        """Resolve ``path`` against the root without touching the filesystem.

        Raises PathOutsideRootError if the normalized path leaves the root.
        """
        candidate = os.path.normpath(os.path.join(self._root, path))
        if os.path.commonpath([self._root, candidate]) != self._root:
            raise PathOutsideRootError(
                "Invalid path: cannot access outside root directory"
            )
        return Path(candidate)

    def read(self, payload: ReadPayload) -> FileOperationResult:
        """Read a file, windowed by 1-based line offset and capped in size."""
        try:
            path = self.resolve(payload.path)
        except PathOutsideRootError as e:
            return FileOperationResult(success=False, error=str(e))

        if not path.is_file():
            return FileOperationResult(success=False, error="File not found")

        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            return FileOperationResult(success=False, error=f"Failed to read file: {e}")

        lines = text.split("\n")
        start = (payload.offset or 1) - 1
        max_lines = min(
            payload.limit if payload.limit is not None else MAX_READ_LINES,
            MAX_READ_LINES,
        )
        if start >= len(lines):
            return FileOperationResult(success=True, content="", lines_read=0)

        selected = lines[start:start + max_lines]
        content = "\n".join(selected)
        truncated = len(lines) > start + max_lines
        if len(content) > MAX_READ_CHARS:
            content = content[:MAX_READ_CHARS]
            truncated = True

        return FileOperationResult(
            success=True,
            content=content,
            lines_read=len(selected),
            truncated=truncated,
        )

    def write(self, payload: WritePayload) -> FileOperationResult:
        """Write a file, creating parent directories as needed."""
        try:
            path = self.resolve(payload.path)
        except PathOutsideRootError as e:
            return FileOperationResult(success=False, error=str(e))

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(payload.content, encoding="utf-8")
        except OSError as e:
            return FileOperationResult(success=False, error=f"Failed to write file: {e}")

        logger.info("Wrote %d chars to %s", len(payload.content), path)
        return FileOperationResult(success=True)

    def edit(self, payload: EditPayload) -> FileOperationResult:
        """Replace exactly one literal occurrence of old_text with new_text."""
        try:
            path = self.resolve(payload.path)
        except PathOutsideRootError as e:
            return FileOperationResult(success=False, error=str(e))

        if not path.is_file():
            return FileOperationResult(success=False, error="File not found")

        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return FileOperationResult(success=False, error=f"Failed to edit file: {e}")

        matches = text.count(payload.old_text)
        if matches == 0:
            return FileOperationResult(success=False, error="Old text not found in file")
        if matches > 1:
            return FileOperationResult(
                success=False,
                error=f"Old text matches {matches} locations; it must be unique",
            )

        try:
            path.write_text(text.replace(payload.old_text, payload.new_text, 1), encoding="utf-8")
        except OSError as e:
            return FileOperationResult(success=False, error=f"Failed to edit file: {e}")

        logger.info("Edited %s", path)
        return FileOperationResult(success=True)
