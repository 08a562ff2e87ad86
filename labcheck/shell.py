"""
Subprocess execution with hard timeouts.

Every process started here is reaped before the call returns: on timeout
(or cancellation) the child is killed and waited on, so nothing outlives
the validator that spawned it.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from .errors import ProcessError, ProcessTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Exit code and captured output of a finished process."""
    exit_code: int
    stdout: str
    stderr: str

    def success(self) -> bool:
        return self.exit_code == 0


async def _reap(process: asyncio.subprocess.Process) -> None:
    """Kill a child that is still running and wait for it."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


async def run_process(
    args: Sequence[str],
    cwd: Optional[Union[str, Path]] = None,
    timeout: Optional[float] = None,
) -> CommandResult:
    """
    Run a command and capture its output.

    Args:
        args: Program and arguments (no shell)
        cwd: Working directory
        timeout: Seconds before the process is killed, None to wait forever

    Returns:
        CommandResult with exit code, stdout and stderr

    Raises:
        ProcessError: the program could not be started
        ProcessTimeoutError: the program ran past the timeout and was killed
    """
    logger.debug("running %s (cwd=%s)", " ".join(args), cwd)
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd) if cwd else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ProcessError(f"failed to run '{args[0]}': {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        raise ProcessTimeoutError(args, timeout) from None
    finally:
        await _reap(process)

    result = CommandResult(
        exit_code=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    logger.debug(
        "%s exited with %d: stdout=%d bytes, stderr=%d bytes",
        args[0], result.exit_code, len(result.stdout), len(result.stderr),
    )
    return result


async def run_command(cmd: str, timeout: Optional[float] = None) -> CommandResult:
    """Run a shell command line through sh -c."""
    return await run_process(["sh", "-c", cmd], timeout=timeout)


async def run_commands(commands: Sequence[str]) -> Optional[Tuple[str, CommandResult]]:
    """
    Run commands in order, stopping at the first failure.

    Returns None if every command succeeded, otherwise (command, result)
    for the one that failed.
    """
    for cmd in commands:
        try:
            result = await run_command(cmd)
        except ProcessError as e:
            return cmd, CommandResult(exit_code=-1, stdout="", stderr=str(e))
        if not result.success():
            return cmd, result
    return None


async def run_commands_best_effort(commands: Sequence[str]) -> List[Tuple[str, CommandResult]]:
    """Run every command even if some fail; return the failures."""
    failures = []
    for cmd in commands:
        try:
            result = await run_command(cmd)
        except ProcessError as e:
            result = CommandResult(exit_code=-1, stdout="", stderr=str(e))
        if not result.success():
            logger.warning("cleanup command failed: %s (exit %d)", cmd, result.exit_code)
            failures.append((cmd, result))
    return failures
