"""Workspace file checks."""

import asyncio
from pathlib import Path
from typing import Optional

from ..errors import ValidatorError
from ..results import TestCase
from .base import BaseValidator

PREVIEW_CHARS = 50


class FileContentsMatchValidator(BaseValidator):
    """Compare a file's trimmed contents with the expected text.

    Relative paths are resolved against the workspace.
    """

    kind = "file_contents_match"

    def __init__(self, path: str, expected_content: str, workspace: Optional[Path] = None):
        self.path = path
        self.expected_content = expected_content
        self.workspace = workspace

    def resolve(self) -> Path:
        path = Path(self.path).expanduser()
        if not path.is_absolute() and self.workspace is not None:
            path = self.workspace / path
        return path

    def read(self) -> Optional[str]:
        """File contents, or None when the file does not exist."""
        path = self.resolve()
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ValidatorError(f"failed to read '{self.path}': {e}") from e

    async def validate(self) -> TestCase:
        content = await asyncio.to_thread(self.read)
        if content is None:
            return TestCase.fail(f"file {self.path} exists", f"file '{self.path}' does not exist")

        name = f"file '{self.path}' content matches"
        actual = content.strip()
        expected = self.expected_content.strip()
        if actual == expected:
            return TestCase.ok(name, f"file '{self.path}' content matches expected")
        return TestCase.fail(
            name,
            "content mismatch:\n"
            f"  expected: '{expected[:PREVIEW_CHARS]}...'\n"
            f"  got: '{actual[:PREVIEW_CHARS]}...'",
        )
