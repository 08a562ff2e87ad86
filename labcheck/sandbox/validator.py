"""
Expectations for sandboxed runs and the docker validator.

Expectation syntax:
    exit:<int>
    fail_if:stdout contains <text>
    fail_if:stderr contains <text>
    pass_if:stdout contains <text>
    pass_if:stderr contains <text>
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from ..config import MESSAGE_LIMIT
from ..errors import ValidatorSpecError
from ..results import TestCase
from ..shell import CommandResult
from ..validators.base import BaseValidator, truncate
from .executor import DockerExecutor

CONTEXT_CHARS = 200


class ExpectationKind(Enum):
    EXIT_CODE = "exit"
    FAIL_IF_STDOUT = "fail_if:stdout"
    FAIL_IF_STDERR = "fail_if:stderr"
    PASS_IF_STDOUT = "pass_if:stdout"
    PASS_IF_STDERR = "pass_if:stderr"


@dataclass(frozen=True)
class Expectation:
    """How a container's output decides pass or fail."""
    kind: ExpectationKind
    exit_code: int = 0
    pattern: str = ""

    @classmethod
    def parse(cls, text: str) -> "Expectation":
        """
        Parse an expectation string.

        Raises:
            ValidatorSpecError: unknown prefix, bad exit code, or a contains
                clause that names neither stdout nor stderr
        """
        text = text.strip()

        if text.startswith("exit:"):
            code = text[len("exit:"):]
            try:
                return cls(ExpectationKind.EXIT_CODE, exit_code=int(code.strip()))
            except ValueError:
                raise ValidatorSpecError(f"invalid exit code: {code}") from None

        for mode in ("fail_if", "pass_if"):
            prefix = f"{mode}:"
            if text.startswith(prefix):
                return cls._parse_contains(mode, text[len(prefix):].strip())

        raise ValidatorSpecError(f"unknown expectation format: {text}")

    @classmethod
    def _parse_contains(cls, mode: str, clause: str) -> "Expectation":
        for stream in ("stdout", "stderr"):
            prefix = f"{stream} contains "
            if clause.startswith(prefix):
                kind = ExpectationKind(f"{mode}:{stream}")
                return cls(kind, pattern=clause[len(prefix):].strip())
        raise ValidatorSpecError(
            "invalid contains format, expected 'stdout contains X' or "
            f"'stderr contains X': {clause}"
        )

    def evaluate(self, name: str, result: CommandResult) -> TestCase:
        """Judge a finished run."""
        kind = self.kind
        pattern = self.pattern

        if kind is ExpectationKind.EXIT_CODE:
            if result.exit_code == self.exit_code:
                return TestCase.ok(name, f"exit code {self.exit_code} as expected")
            return TestCase.fail(
                name,
                f"expected exit code {self.exit_code}, got {result.exit_code}\n"
                f"{truncate(result.stderr, MESSAGE_LIMIT)}",
            )

        if kind is ExpectationKind.FAIL_IF_STDOUT:
            if pattern in result.stdout:
                return TestCase.fail(name, f"stdout contains '{pattern}' (failure condition)")
            return TestCase.ok(name, "validation passed")

        if kind is ExpectationKind.FAIL_IF_STDERR:
            if pattern in result.stderr:
                return TestCase.fail(
                    name, f"stderr contains '{pattern}':\n{extract_context(result.stderr, pattern)}"
                )
            return TestCase.ok(name, "validation passed")

        stream = "stdout" if kind is ExpectationKind.PASS_IF_STDOUT else "stderr"
        if pattern in getattr(result, stream):
            return TestCase.ok(name, f"{stream} contains '{pattern}' as expected")
        return TestCase.fail(name, f"expected {stream} to contain '{pattern}'")

    def __str__(self) -> str:
        if self.kind is ExpectationKind.EXIT_CODE:
            return f"exit:{self.exit_code}"
        mode, stream = self.kind.value.split(":")
        return f"{mode}:{stream} contains {self.pattern}"


def extract_context(text: str, pattern: str, context_chars: int = CONTEXT_CHARS) -> str:
    """Excerpt of text around the first match of pattern."""
    pos = text.find(pattern)
    if pos < 0:
        return truncate(text, context_chars)

    start = max(0, pos - context_chars // 2)
    end = min(len(text), pos + len(pattern) + context_chars // 2)
    excerpt = text[start:end]
    if start > 0 or end < len(text):
        return f"...{excerpt}..."
    return excerpt


class DockerValidator(BaseValidator):
    """Run a registered image against the workspace and judge its output."""

    kind = "docker"

    def __init__(
        self,
        image_key: str,
        expectation: Expectation,
        timeout: Optional[int] = None,
        workspace: Optional[Path] = None,
        executor: Optional[DockerExecutor] = None,
    ):
        self.image_key = image_key
        self.expectation = expectation
        self.timeout = timeout
        self.workspace = workspace or Path.cwd()
        self.executor = executor or DockerExecutor()

    async def validate(self) -> TestCase:
        name = f"docker:{self.image_key}"
        result = await self.executor.run(self.image_key, self.workspace, self.timeout)

        if result.stage != "run":
            return TestCase.fail(
                name,
                f"docker {result.stage} failed (exit {result.exit_code}):\n"
                f"{truncate(result.stderr.strip())}",
            )
        return self.expectation.evaluate(name, result)
