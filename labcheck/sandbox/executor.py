"""
Docker executor for registered images.

SECURITY MODEL:
1. Registry check - the image key must be in registry.REGISTERED_IMAGES,
   checked before any docker, network or filesystem activity
2. Trusted sources - Dockerfiles come only from DOCKERFILE_BASE_URL, remote
   images only by their exact registered reference
3. Timeout enforcement - the docker client is killed and the container
   force-removed by name when the run exceeds its limit
4. Guaranteed cleanup - images built here are removed in a finally block

Each build is tagged with a millisecond timestamp, so concurrent runs never
share an image. The Dockerfile cache is overwrite-only, by image key.
"""

import asyncio
import logging
import os
import tempfile
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import httpx

from ..config import (
    BUILD_TIMEOUT_SECONDS,
    DOCKER_CACHE_DIR,
    DOCKER_TIMEOUT_SECONDS,
    DOCKERFILE_BASE_URL,
    DOCKERFILE_FETCH_TIMEOUT_SECONDS,
)
from ..errors import ProcessError, ProcessTimeoutError, SandboxError, SandboxTimeoutError
from ..shell import CommandResult, run_process
from .registry import RegisteredImage, require

logger = logging.getLogger(__name__)

AVAILABILITY_TIMEOUT_SECONDS = 10
CLEANUP_TIMEOUT_SECONDS = 30


@dataclass
class ExecutorResult(CommandResult):
    """Output of the last docker stage that ran: "pull", "build" or "run"."""
    stage: str = "run"


def image_tag(key: str) -> str:
    """Unique tag for a local build of key."""
    return f"labcheck-{key.lower().replace('.', '-')}:{int(time.time() * 1000)}"


class DockerExecutor:
    """
    Builds or pulls a registered image and runs it against a workspace.

    The workspace is bind-mounted read-write at /app with host networking,
    so the container can reach servers the user runs locally.
    """

    def __init__(
        self,
        cache_dir: Union[str, Path] = DOCKER_CACHE_DIR,
        base_url: str = DOCKERFILE_BASE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        docker: str = "docker",
    ):
        self.cache_dir = Path(cache_dir)
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client
        self.docker = docker

    async def is_available(self) -> bool:
        try:
            result = await run_process(
                [self.docker, "version", "--format", "{{.Server.Version}}"],
                timeout=AVAILABILITY_TIMEOUT_SECONDS,
            )
        except ProcessError as e:
            logger.debug("docker unavailable: %s", e)
            return False
        return result.success()

    async def _get(self, url: str) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.get(url)
        async with httpx.AsyncClient(timeout=DOCKERFILE_FETCH_TIMEOUT_SECONDS) as client:
            return await client.get(url)

    async def fetch_dockerfile(self, image: RegisteredImage) -> Path:
        """
        Download an image's Dockerfile into the cache.

        Raises:
            SandboxError: the download failed or returned a non-2xx status
        """
        url = f"{self.base_url}/{image.source.path}"
        logger.debug("fetching Dockerfile for %s from %s", image.key, url)
        try:
            response = await self._get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SandboxError(
                f"Dockerfile '{image.key}' not found (status {e.response.status_code})"
            ) from e
        except httpx.HTTPError as e:
            raise SandboxError(f"failed to fetch Dockerfile '{image.key}': {e}") from e

        try:
            return await asyncio.to_thread(self._write_cache, image.key, response.text)
        except OSError as e:
            raise SandboxError(f"failed to cache Dockerfile: {e}") from e

    def _write_cache(self, key: str, text: str) -> Path:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        cache_path = self.cache_dir / key
        fd, tmp = tempfile.mkstemp(dir=self.cache_dir, prefix=f".{key}.")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, cache_path)
        return cache_path

    async def _docker(self, *args: str, timeout: Optional[float] = None) -> CommandResult:
        try:
            return await run_process([self.docker, *args], timeout=timeout)
        except ProcessTimeoutError:
            raise
        except ProcessError as e:
            raise SandboxError(f"docker {args[0]} failed: {e}") from e

    async def build(self, dockerfile: Path, workspace: Path, tag: str) -> CommandResult:
        logger.info("building %s (this may take a moment)", tag)
        try:
            return await self._docker(
                "build", "-f", str(dockerfile), "-t", tag, str(workspace),
                timeout=BUILD_TIMEOUT_SECONDS,
            )
        except ProcessTimeoutError as e:
            raise SandboxTimeoutError(f"docker build timed out after {BUILD_TIMEOUT_SECONDS:g}s") from e

    async def pull(self, reference: str) -> CommandResult:
        logger.info("pulling %s", reference)
        try:
            return await self._docker("pull", reference, timeout=BUILD_TIMEOUT_SECONDS)
        except ProcessTimeoutError as e:
            raise SandboxTimeoutError(f"docker pull timed out after {BUILD_TIMEOUT_SECONDS:g}s") from e

    async def run_container(self, image: str, workspace: Path, timeout: int) -> CommandResult:
        """
        Run an image with the workspace mounted at /app.

        Raises:
            SandboxTimeoutError: the container ran past timeout; the client
                is killed and the container force-removed before raising
        """
        name = f"labcheck-run-{uuid.uuid4().hex[:12]}"
        logger.info("running %s as %s", image, name)
        try:
            return await self._docker(
                "run", "--rm", "--name", name, "--network=host",
                "-v", f"{workspace}:/app", "-w", "/app", image,
                timeout=timeout,
            )
        except ProcessTimeoutError:
            await self._cleanup("rm", "-f", name)
            raise SandboxTimeoutError(f"container timed out after {timeout}s") from None

    async def remove_image(self, tag: str) -> None:
        await self._cleanup("rmi", "-f", tag)

    async def _cleanup(self, *args: str) -> None:
        try:
            result = await run_process([self.docker, *args], timeout=CLEANUP_TIMEOUT_SECONDS)
        except ProcessError as e:
            logger.warning("docker %s failed: %s", " ".join(args), e)
            return
        if not result.success():
            logger.warning(
                "docker %s exited %d: %s", " ".join(args), result.exit_code, result.stderr.strip()
            )

    async def run(
        self,
        image_key: str,
        workspace: Union[str, Path],
        timeout: Optional[int] = None,
    ) -> ExecutorResult:
        """
        Build or pull a registered image and run it against the workspace.

        Returns:
            ExecutorResult of the run, or of the pull/build stage if that
            stage failed

        Raises:
            UnregisteredImageError: image_key is not registered
            SandboxError: docker is unavailable, the workspace does not
                exist, or the Dockerfile could not be fetched
            SandboxTimeoutError: the container ran past its timeout
        """
        image = require(image_key)
        timeout = timeout or DOCKER_TIMEOUT_SECONDS

        if not await self.is_available():
            raise SandboxError("docker not available")

        try:
            workspace_path = await asyncio.to_thread(
                Path(workspace).expanduser().resolve, strict=True
            )
        except OSError as e:
            raise SandboxError(f"cannot resolve workspace '{workspace}': {e}") from e

        if image.source.is_remote:
            pulled = await self.pull(image.source.path)
            if not pulled.success():
                return ExecutorResult(pulled.exit_code, pulled.stdout, pulled.stderr, stage="pull")
            result = await self.run_container(image.source.path, workspace_path, timeout)
            return ExecutorResult(result.exit_code, result.stdout, result.stderr)

        dockerfile = await self.fetch_dockerfile(image)
        tag = image_tag(image.key)
        try:
            built = await self.build(dockerfile, workspace_path, tag)
            if not built.success():
                return ExecutorResult(built.exit_code, built.stdout, built.stderr, stage="build")
            result = await self.run_container(tag, workspace_path, timeout)
            return ExecutorResult(result.exit_code, result.stdout, result.stderr)
        finally:
            await self.remove_image(tag)
