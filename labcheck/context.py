"""Where the user's solution lives and how to reach it."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from .config import DEFAULT_HOST, HTTP_PORT, SCENARIO_PORT


@dataclass(frozen=True)
class ValidationContext:
    """
    Inputs the engine receives from the task-state layer.

    workspace is the directory holding the user's project; runtime is an
    optional hint ("go", "rust") that overrides manifest auto-detection.
    The ports are where protocol and scenario validators find the server
    under test.
    """
    workspace: Path = field(default_factory=Path.cwd)
    runtime: Optional[str] = None
    host: str = DEFAULT_HOST
    http_port: int = HTTP_PORT
    scenario_port: int = SCENARIO_PORT

    @classmethod
    def from_workspace(
        cls,
        workspace: Optional[Union[str, Path]],
        runtime: Optional[str] = None,
        **overrides,
    ) -> "ValidationContext":
        path = Path(workspace).expanduser() if workspace else Path.cwd()
        return cls(workspace=path, runtime=runtime, **overrides)
