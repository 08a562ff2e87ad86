"""Workspace build check."""

import asyncio
from pathlib import Path
from typing import Optional

from ..config import BUILD_TIMEOUT_SECONDS
from ..errors import ValidatorError, ValidatorSpecError
from ..results import TestCase
from ..runtime import SupportedRuntime, resolve_runtime
from ..shell import run_process
from .base import BaseValidator

STDERR_PREVIEW_LINES = 5


class CanCompileValidator(BaseValidator):
    """Build the workspace with its runtime's toolchain.

    expected_success=False inverts the check, for tasks that ship a
    deliberately broken program.
    """

    kind = "can_compile"

    def __init__(
        self,
        expected_success: bool,
        workspace: Optional[Path] = None,
        runtime: Optional[str] = None,
        timeout: float = BUILD_TIMEOUT_SECONDS,
    ):
        self.expected_success = expected_success
        self.workspace = workspace or Path.cwd()
        self.runtime = runtime
        self.timeout = timeout

    def build_command(self):
        try:
            runtime = resolve_runtime(self.runtime, self.workspace)
        except ValidatorSpecError as e:
            raise ValidatorError(str(e)) from e

        if runtime is SupportedRuntime.GO and not runtime.has_source_files(self.workspace):
            raise ValidatorError(f"no .{runtime.extension} source files found in project directory")
        return runtime.build_command

    async def validate(self) -> TestCase:
        name = "lab compiles" if self.expected_success else "lab compiles (expected failure)"
        command = await asyncio.to_thread(self.build_command)
        result = await run_process(command, cwd=self.workspace, timeout=self.timeout)

        if result.success() and self.expected_success:
            return TestCase.ok(name, f"{' '.join(command)} succeeded")
        if not result.success() and not self.expected_success:
            return TestCase.ok(name, "compilation failed as expected")
        if result.success():
            return TestCase.fail(name, "expected compilation to fail, but it succeeded")

        preview = "\n".join(result.stderr.splitlines()[:STDERR_PREVIEW_LINES])
        return TestCase.fail(name, f"compilation failed:\n{preview}")
