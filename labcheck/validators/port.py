"""TCP reachability."""

import asyncio
import logging

from ..config import CONNECT_TIMEOUT_SECONDS, DEFAULT_HOST
from ..results import TestCase
from .base import BaseValidator

logger = logging.getLogger(__name__)


class PortValidator(BaseValidator):
    """Passes when a TCP connection to host:port can be opened."""

    kind = "tcp_listening"

    def __init__(self, port: int, host: str = DEFAULT_HOST, timeout: float = CONNECT_TIMEOUT_SECONDS):
        self.port = port
        self.host = host
        self.timeout = timeout

    async def validate(self) -> TestCase:
        name = f"server listening on port {self.port}"
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            return TestCase.fail(name, f"connection timeout after {self.timeout:g} seconds")
        except (OSError, OverflowError, ValueError) as e:
            logger.debug("connect to %s:%s failed: %s", self.host, self.port, e)
            return TestCase.fail(name, f"connection failed: {e}")

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return TestCase.ok(name, f"successfully connected to port {self.port}")
