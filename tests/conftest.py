"""Shared fixtures: stand-in servers, processes and a fake docker binary."""

import asyncio
import shlex
import socket
import stat
import sys
import threading
import time
from typing import Callable, Union

import pytest
import uvicorn

from labcheck.context import ValidationContext

from jobqueue_app import create_job_app
from servers import RawRequest, read_request


# ============ Raw HTTP servers ============

Handler = Union[bytes, Callable[[RawRequest], bytes]]


@pytest.fixture
async def raw_server():
    """
    Start a one-response-per-connection TCP server.

    Call with canned response bytes, or with a function of the parsed
    request returning bytes. Returns the port. Every request seen is
    appended to ``start.requests``.
    """
    started = []

    async def start(handler: Handler) -> int:
        async def on_connect(reader, writer):
            try:
                request = await read_request(reader)
                start.requests.append(request)
                response = handler(request) if callable(handler) else handler
                writer.write(response)
                await writer.drain()
            except (asyncio.IncompleteReadError, ConnectionError):
                pass
            finally:
                writer.close()

        server = await asyncio.start_server(on_connect, "127.0.0.1", 0)
        started.append(server)
        return server.sockets[0].getsockname()[1]

    start.requests = []
    yield start

    for server in started:
        server.close()
        await server.wait_closed()


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def closed_port() -> int:
    """A port with nothing listening on it."""
    return free_port()


# ============ Job-queue service ============

@pytest.fixture
def job_server():
    """
    Serve the FastAPI job queue with uvicorn in a background thread.

    Call with create_job_app options; returns the port.
    """
    running = []

    def start(**options) -> int:
        port = free_port()
        config = uvicorn.Config(
            create_job_app(**options),
            host="127.0.0.1",
            port=port,
            log_level="warning",
            lifespan="on",
        )
        server = uvicorn.Server(config)
        thread = threading.Thread(target=server.run, daemon=True)
        thread.start()
        running.append((server, thread))

        deadline = time.monotonic() + 10
        while not server.started:
            if time.monotonic() > deadline or not thread.is_alive():
                raise RuntimeError("job queue server failed to start")
            time.sleep(0.01)
        return port

    yield start

    for server, thread in running:
        server.should_exit = True
        thread.join(timeout=5)


# ============ Processes ============

@pytest.fixture
def python_command(tmp_path):
    """Write a Python script into tmp_path and return a command line for it."""

    def make(source: str, name: str = "target.py") -> str:
        script = tmp_path / name
        script.write_text(source)
        return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"

    return make


# ============ Docker ============

FAKE_DOCKER = """#!/bin/sh
echo "$@" >> "$FAKE_DOCKER_LOG"
case "$1" in
  version)
    exit "${FAKE_DOCKER_VERSION_EXIT:-0}" ;;
  build)
    if [ -n "$FAKE_DOCKER_BUILD_FAIL" ]; then
      echo "step 3/5: go build failed" >&2
      exit 1
    fi
    exit 0 ;;
  run)
    printf '%s' "$FAKE_DOCKER_STDOUT"
    printf '%s' "$FAKE_DOCKER_STDERR" >&2
    if [ -n "$FAKE_DOCKER_SLEEP" ]; then
      exec sleep "$FAKE_DOCKER_SLEEP"
    fi
    exit "${FAKE_DOCKER_EXIT:-0}" ;;
  *)
    exit 0 ;;
esac
"""


@pytest.fixture
def fake_docker(tmp_path, monkeypatch):
    """
    A docker stand-in that records every invocation.

    Behaviour is steered through FAKE_DOCKER_* environment variables.
    Returns (path to the script, path to the invocation log).
    """
    script = tmp_path / "bin" / "docker"
    script.parent.mkdir()
    script.write_text(FAKE_DOCKER)
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    log = tmp_path / "docker.log"
    log.touch()
    monkeypatch.setenv("FAKE_DOCKER_LOG", str(log))
    for name in ("VERSION_EXIT", "BUILD_FAIL", "STDOUT", "STDERR", "SLEEP", "EXIT"):
        monkeypatch.delenv(f"FAKE_DOCKER_{name}", raising=False)
    return script, log


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws


@pytest.fixture
def context(workspace):
    return ValidationContext.from_workspace(workspace)
