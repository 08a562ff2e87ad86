"""Supported project runtimes and workspace auto-detection."""

from enum import Enum
from pathlib import Path
from typing import List, Optional

from .errors import ValidatorSpecError


class SupportedRuntime(Enum):
    GO = "go"
    RUST = "rust"

    @property
    def extension(self) -> str:
        """Source file extension, without the dot."""
        return {SupportedRuntime.GO: "go", SupportedRuntime.RUST: "rs"}[self]

    @property
    def module_file(self) -> str:
        """Manifest file that marks a project of this runtime."""
        return {SupportedRuntime.GO: "go.mod", SupportedRuntime.RUST: "Cargo.toml"}[self]

    @property
    def build_command(self) -> List[str]:
        if self is SupportedRuntime.GO:
            return ["go", "build", "."]
        return ["cargo", "check"]

    @classmethod
    def parse(cls, value: str) -> "SupportedRuntime":
        aliases = {
            "go": cls.GO,
            "golang": cls.GO,
            "rust": cls.RUST,
            "rs": cls.RUST,
        }
        try:
            return aliases[value.strip().lower()]
        except KeyError:
            raise ValidatorSpecError(
                f"unsupported runtime '{value}'. supported: go, rust"
            ) from None

    @classmethod
    def detect(cls, workspace: Path) -> Optional["SupportedRuntime"]:
        """Detect the runtime from manifest files in the workspace."""
        for runtime in cls:
            if (workspace / runtime.module_file).exists():
                return runtime
        return None

    def has_source_files(self, workspace: Path) -> bool:
        try:
            return any(
                p.is_file() and p.suffix == f".{self.extension}"
                for p in workspace.iterdir()
            )
        except OSError:
            return False

    def __str__(self) -> str:
        return self.value


def resolve_runtime(runtime: Optional[str], workspace: Path) -> SupportedRuntime:
    """
    Pick the runtime for a workspace.

    An explicit runtime hint wins; otherwise the workspace is probed for
    known manifest files.

    Raises:
        ValidatorSpecError: hint names an unsupported runtime, or nothing
            could be detected.
    """
    if runtime:
        return SupportedRuntime.parse(runtime)

    detected = SupportedRuntime.detect(workspace)
    if detected is None:
        expected = " or ".join(r.module_file for r in SupportedRuntime)
        raise ValidatorSpecError(
            f"unable to detect project type. expected {expected} in workspace"
        )
    return detected
