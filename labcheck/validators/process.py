"""
Process lifecycle validators.

GracefulShutdownValidator owns a child process for the duration of the
check and always reclaims it, whatever path validate() leaves by.
"""

import asyncio
import logging
import os
import shlex
import signal
from pathlib import Path
from typing import List, Optional

from ..config import DEFAULT_HOST
from ..errors import ProcessError, ValidatorError
from ..results import TestCase
from .base import BaseValidator, summarize_errors
from .http import http_request

logger = logging.getLogger(__name__)

DEFAULT_STARTUP_MS = 1000
DEFAULT_ACCESS_TIMEOUT_MS = 5000


def signals_supported() -> bool:
    return os.name == "posix"


class GracefulShutdownValidator(BaseValidator):
    """Start a binary, send SIGTERM, and expect a clean exit within the timeout."""

    kind = "graceful_shutdown"

    def __init__(
        self,
        binary: str,
        timeout_ms: int,
        expected_exit_code: int = 0,
        startup_ms: int = DEFAULT_STARTUP_MS,
        workspace: Optional[Path] = None,
    ):
        self.binary = binary
        self.timeout_ms = timeout_ms
        self.expected_exit_code = expected_exit_code
        self.startup_ms = startup_ms
        self.workspace = workspace or Path.cwd()

    async def _spawn(self) -> asyncio.subprocess.Process:
        args = shlex.split(self.binary)
        if not args:
            raise ProcessError("failed to spawn process: empty command")
        try:
            return await asyncio.create_subprocess_exec(
                *args,
                cwd=str(self.workspace),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise ProcessError(f"failed to spawn process: {e}") from e

    async def validate(self) -> TestCase:
        if not signals_supported():
            return TestCase.fail(
                "graceful shutdown", "graceful_shutdown validator only supported on Unix systems"
            )

        name = f"graceful shutdown within {self.timeout_ms}ms"
        process = await self._spawn()
        logger.debug("spawned %s as pid %d", self.binary, process.pid)

        try:
            await asyncio.sleep(self.startup_ms / 1000)

            if process.returncode is not None:
                return TestCase.fail(
                    name, f"process exited before SIGTERM with code {process.returncode}"
                )
            try:
                process.send_signal(signal.SIGTERM)
            except ProcessLookupError:
                return TestCase.fail(name, "process exited before SIGTERM")

            try:
                exit_code = await asyncio.wait_for(process.wait(), timeout=self.timeout_ms / 1000)
            except asyncio.TimeoutError:
                return TestCase.fail(
                    name, f"process did not exit within {self.timeout_ms}ms after SIGTERM"
                )
        finally:
            if process.returncode is None:
                logger.debug("killing pid %d", process.pid)
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        if exit_code == self.expected_exit_code:
            return TestCase.ok(
                name, f"process exited gracefully with code {exit_code} after SIGTERM"
            )
        return TestCase.fail(
            name, f"expected exit code {self.expected_exit_code}, got {exit_code}"
        )


class ConcurrentAccessValidator(BaseValidator):
    """
    C clients each issue K sequential GETs, all clients at once.

    The whole run shares one deadline; missing it is reported as a probable
    deadlock rather than as individual request failures.
    """

    kind = "concurrent_access"

    def __init__(
        self,
        port: int,
        path: str,
        clients: int,
        operations: int,
        timeout_ms: int = DEFAULT_ACCESS_TIMEOUT_MS,
        host: str = DEFAULT_HOST,
    ):
        self.port = port
        self.path = path
        self.clients = clients
        self.operations = operations
        self.timeout_ms = timeout_ms
        self.host = host

    async def _client(self, client_id: int) -> List[Optional[str]]:
        outcomes = []
        for op_id in range(self.operations):
            try:
                await http_request(self.host, self.port, "GET", self.path)
            except ValidatorError as e:
                outcomes.append(f"client {client_id}, op {op_id}: {e}")
            else:
                outcomes.append(None)
        return outcomes

    async def validate(self) -> TestCase:
        name = f"{self.clients} concurrent clients x {self.operations} operations"
        try:
            per_client = await asyncio.wait_for(
                asyncio.gather(*(self._client(c) for c in range(self.clients))),
                timeout=self.timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            return TestCase.fail(
                name,
                f"concurrent operations timed out after {self.timeout_ms}ms - possible deadlock",
            )

        outcomes = [o for client in per_client for o in client]
        failures = [o for o in outcomes if o is not None]
        total = len(outcomes)

        if not failures:
            return TestCase.ok(
                name, f"all {total}/{total} concurrent operations completed successfully"
            )
        return TestCase.fail(
            name, f"{len(failures)}/{total} operations failed: {summarize_errors(failures)}"
        )
