"""
Protocol validators over hand-rolled HTTP/1.1.

Requests are written to a bare TCP stream and the response is read until the
peer closes the connection. Parsing is permissive: only the status line
must be well formed, and the body is never dechunked or trimmed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import DEFAULT_HOST, HTTP_PORT, HTTP_TIMEOUT_SECONDS
from ..errors import HttpError, ValidatorError
from ..results import TestCase
from .base import (
    MISSING,
    BaseValidator,
    fan_out_summary,
    get_field,
    json_value_to_string,
    parse_json,
    truncate,
)

logger = logging.getLogger(__name__)

Headers = Sequence[Tuple[str, str]]


@dataclass
class HttpResponse:
    """A parsed HTTP response. Header names are lower-cased."""
    status_code: int
    status_text: str
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: str = ""

    @classmethod
    def parse(cls, raw: str) -> "HttpResponse":
        """
        Parse a raw response.

        The body is everything after the first blank line, passed through
        verbatim (no dechunking, no Content-Length trimming).

        Raises:
            HttpError: empty response or malformed status line
        """
        if not raw:
            raise HttpError("empty response")

        head, body = raw, ""
        for separator in ("\r\n\r\n", "\n\n"):
            if separator in raw:
                head, body = raw.split(separator, 1)
                break

        lines = head.splitlines()
        status_line = lines[0] if lines else ""
        parts = status_line.split(" ", 2)
        if len(parts) < 2:
            raise HttpError(f"invalid status line: {status_line}")

        try:
            status_code = int(parts[1])
        except ValueError:
            raise HttpError(f"invalid status code: {parts[1]}") from None
        status_text = parts[2].strip() if len(parts) > 2 else ""

        headers = []
        for line in lines[1:]:
            name, sep, value = line.partition(":")
            if sep:
                headers.append((name.strip().lower(), value.strip()))

        return cls(status_code=status_code, status_text=status_text, headers=headers, body=body)

    def get_header(self, name: str) -> Optional[str]:
        """First value of a header, matched case-insensitively."""
        name = name.lower()
        for key, value in self.headers:
            if key == name:
                return value
        return None

    def has_header(self, name: str) -> bool:
        return self.get_header(name) is not None

    @property
    def header_map(self) -> Dict[str, str]:
        result = {}
        for key, value in self.headers:
            result.setdefault(key, value)
        return result


def build_request(
    host: str,
    method: str,
    path: str,
    headers: Headers = (),
    body: Optional[str] = None,
) -> bytes:
    """Assemble a Connection: close request."""
    lines = [f"{method} {path} HTTP/1.1", f"Host: {host}", "Connection: close"]
    lines.extend(f"{name}: {value}" for name, value in headers)
    payload = body.encode("utf-8") if body is not None else b""
    if body is not None:
        lines.append(f"Content-Length: {len(payload)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8") + payload


async def http_request(
    host: str,
    port: int,
    method: str,
    path: str,
    headers: Headers = (),
    body: Optional[str] = None,
    timeout: float = HTTP_TIMEOUT_SECONDS,
) -> HttpResponse:
    """
    Send one request over a fresh TCP connection and parse the reply.

    Raises:
        HttpError: connect failure, timeout, or an unparseable response
    """
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except asyncio.TimeoutError:
        raise HttpError("connection timeout") from None
    except (OSError, OverflowError, ValueError) as e:
        raise HttpError(f"connection failed: {e}") from e

    try:
        try:
            writer.write(build_request(host, method, path, headers, body))
            await writer.drain()
        except OSError as e:
            raise HttpError(f"failed to send request: {e}") from e

        try:
            raw = await asyncio.wait_for(reader.read(), timeout=timeout)
        except asyncio.TimeoutError:
            raise HttpError("read timeout") from None
        except OSError as e:
            raise HttpError(f"failed to read response: {e}") from e
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    logger.debug("%s %s -> %d bytes", method, path, len(raw))
    return HttpResponse.parse(raw.decode("utf-8", errors="replace"))


class HttpValidator(BaseValidator):
    """Common target (host, port) for validators that talk to the server."""

    def __init__(self, host: str = DEFAULT_HOST, port: int = HTTP_PORT):
        self.host = host
        self.port = port

    async def request(
        self,
        method: str,
        path: str,
        headers: Headers = (),
        body: Optional[str] = None,
    ) -> HttpResponse:
        return await http_request(self.host, self.port, method, path, headers, body)


def _status_mismatch(expected: int, actual: int) -> str:
    return f"expected status {expected}, got {actual}"


def _body_mismatch(expected: str, actual: str) -> Optional[str]:
    actual = actual.strip()
    if actual == expected:
        return None
    return truncate(f"expected body '{expected}', got '{actual}'")


class HttpStatusValidator(HttpValidator):
    """GET / and compare the status code."""

    kind = "http_response_status"

    def __init__(self, expected_status: int, **target):
        super().__init__(**target)
        self.expected_status = expected_status

    async def validate(self) -> TestCase:
        name = f"http response status {self.expected_status}"
        response = await self.request("GET", "/")
        if response.status_code == self.expected_status:
            return TestCase.ok(name, f"server returned {self.expected_status} as expected")
        return TestCase.fail(name, _status_mismatch(self.expected_status, response.status_code))


class HttpGetValidator(HttpValidator):
    """GET a path; check the status and optionally the trimmed body."""

    kind = "http_get"

    def __init__(
        self,
        path: str,
        expected_status: int,
        expected_body: Optional[str] = None,
        request_headers: Headers = (),
        **target,
    ):
        super().__init__(**target)
        self.path = path
        self.expected_status = expected_status
        self.expected_body = expected_body
        self.request_headers = tuple(request_headers)

    @property
    def name(self) -> str:
        return f"GET {self.path} returns {self.expected_status}"

    def success_message(self) -> str:
        return f"GET {self.path} returned {self.expected_status} OK"

    async def validate(self) -> TestCase:
        response = await self.request("GET", self.path, self.request_headers)

        errors = []
        if response.status_code != self.expected_status:
            errors.append(_status_mismatch(self.expected_status, response.status_code))
        if self.expected_body is not None:
            mismatch = _body_mismatch(self.expected_body, response.body)
            if mismatch:
                errors.append(mismatch)

        if errors:
            return TestCase.fail(self.name, "; ".join(errors))
        return TestCase.ok(self.name, self.success_message())


class HttpGetWithHeaderValidator(HttpGetValidator):
    """GET with one extra request header, e.g. User-Agent."""

    kind = "http_get_with_header"

    def __init__(
        self,
        path: str,
        header_name: str,
        header_value: str,
        expected_status: int,
        expected_body: Optional[str] = None,
        **target,
    ):
        super().__init__(
            path,
            expected_status,
            expected_body,
            request_headers=[(header_name, header_value)],
            **target,
        )
        self.header_name = header_name
        self.header_value = header_value

    @property
    def name(self) -> str:
        return f"GET {self.path} with {self.header_name}: {self.header_value}"

    def success_message(self) -> str:
        return (
            f"GET {self.path} with header {self.header_name}={self.header_value} "
            f"returned {self.expected_status} OK"
        )


class HttpHeaderPresentValidator(HttpValidator):
    kind = "http_header_present"

    def __init__(self, header_name: str, should_exist: bool, path: str = "/", **target):
        super().__init__(**target)
        self.header_name = header_name
        self.should_exist = should_exist
        self.path = path

    async def validate(self) -> TestCase:
        name = f"header '{self.header_name}' {'present' if self.should_exist else 'absent'}"
        response = await self.request("GET", self.path)
        present = response.has_header(self.header_name)

        if present and self.should_exist:
            return TestCase.ok(name, f"header '{self.header_name}' is present")
        if not present and not self.should_exist:
            return TestCase.ok(name, f"header '{self.header_name}' is absent as expected")
        if self.should_exist:
            return TestCase.fail(name, f"header '{self.header_name}' not found in response")
        return TestCase.fail(name, f"header '{self.header_name}' should not be present")


class HttpHeaderValueValidator(HttpValidator):
    kind = "http_header_value"

    def __init__(self, header_name: str, expected_value: str, path: str = "/", **target):
        super().__init__(**target)
        self.header_name = header_name
        self.expected_value = expected_value
        self.path = path

    async def validate(self) -> TestCase:
        name = f"header '{self.header_name}' = '{self.expected_value}'"
        response = await self.request("GET", self.path)
        actual = response.get_header(self.header_name)

        if actual is None:
            return TestCase.fail(name, f"header '{self.header_name}' not found")
        if actual != self.expected_value:
            return TestCase.fail(
                name,
                truncate(f"header '{self.header_name}' expected '{self.expected_value}', got '{actual}'"),
            )
        return TestCase.ok(name, f"header '{self.header_name}' has value '{self.expected_value}'")


class ConcurrentRequestsValidator(HttpValidator):
    """Fire N simultaneous GETs and require every one to return the status."""

    kind = "concurrent_requests"

    def __init__(self, num_connections: int, path: str, expected_status: int, **target):
        super().__init__(**target)
        self.num_connections = num_connections
        self.path = path
        self.expected_status = expected_status

    async def _one(self, index: int) -> None:
        response = await self.request("GET", self.path)
        if response.status_code != self.expected_status:
            raise ValidatorError(
                f"connection {index} got status {response.status_code} "
                f"instead of {self.expected_status}"
            )

    async def validate(self) -> TestCase:
        name = f"{self.num_connections} concurrent requests"
        outcomes = await asyncio.gather(
            *(self._one(i) for i in range(self.num_connections)),
            return_exceptions=True,
        )

        errors = []
        for outcome in outcomes:
            if isinstance(outcome, ValidatorError):
                errors.append(str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
        successes = self.num_connections - len(errors)

        if not errors:
            return TestCase.ok(name, f"all {self.num_connections} concurrent requests succeeded")
        return TestCase.fail(name, fan_out_summary(successes, self.num_connections, errors))


class HttpPostFileValidator(HttpValidator):
    kind = "http_post_file"

    def __init__(self, path: str, body: str, expected_status: int, **target):
        super().__init__(**target)
        self.path = path
        self.body = body
        self.expected_status = expected_status

    async def validate(self) -> TestCase:
        name = f"POST {self.path} returns {self.expected_status}"
        response = await self.request("POST", self.path, body=self.body)
        if response.status_code == self.expected_status:
            return TestCase.ok(name, f"POST {self.path} returned {self.expected_status} as expected")
        return TestCase.fail(name, _status_mismatch(self.expected_status, response.status_code))


class HttpGetFileValidator(HttpValidator):
    """GET a file; optionally require a Content-Type prefix."""

    kind = "http_get_file"

    def __init__(
        self,
        path: str,
        expected_status: int,
        content_type: Optional[str] = None,
        **target,
    ):
        super().__init__(**target)
        self.path = path
        self.expected_status = expected_status
        self.content_type = content_type

    async def validate(self) -> TestCase:
        name = f"GET file {self.path} returns {self.expected_status}"
        response = await self.request("GET", self.path)

        if response.status_code != self.expected_status:
            return TestCase.fail(name, _status_mismatch(self.expected_status, response.status_code))

        if self.content_type is not None:
            actual = response.get_header("content-type")
            if actual is None:
                return TestCase.fail(
                    name, f"Content-Type header not present, expected '{self.content_type}'"
                )
            if not actual.lower().startswith(self.content_type.lower()):
                return TestCase.fail(
                    name, f"expected Content-Type '{self.content_type}', got '{actual}'"
                )

        length = response.get_header("content-length")
        info = f" ({length} bytes)" if length is not None else ""
        return TestCase.ok(name, f"GET {self.path} returned {self.expected_status}{info} OK")


class HttpGetCompressedValidator(HttpValidator):
    """Send Accept-Encoding and expect the same Content-Encoding back."""

    kind = "http_get_compressed"

    def __init__(self, path: str, encoding: str, **target):
        super().__init__(**target)
        self.path = path
        self.encoding = encoding

    async def validate(self) -> TestCase:
        name = f"GET {self.path} with compression {self.encoding}"
        response = await self.request("GET", self.path, [("Accept-Encoding", self.encoding)])
        actual = response.get_header("content-encoding")

        if actual is None:
            return TestCase.fail(
                name, f"Content-Encoding header not present, expected '{self.encoding}'"
            )
        if actual.lower() != self.encoding.lower():
            return TestCase.fail(
                name, f"expected Content-Encoding '{self.encoding}', got '{actual}'"
            )
        return TestCase.ok(name, f"server returned Content-Encoding: {self.encoding}")


class HttpJsonExistsValidator(HttpValidator):
    kind = "http_json_exists"

    def __init__(self, path: str, method: str, fields: Sequence[str], **target):
        super().__init__(**target)
        self.path = path
        self.method = method
        self.fields = list(fields)

    async def validate(self) -> TestCase:
        name = f"{self.method} {self.path} returns JSON with {self.fields}"
        response = await self.request(self.method, self.path)
        data = parse_json(response.body)

        missing = [f for f in self.fields if get_field(data, f) is MISSING]
        if missing:
            return TestCase.fail(name, f"missing required fields: {missing}")
        return TestCase.ok(name, f"JSON response contains all required fields: {self.fields}")


class HttpJsonFieldValidator(HttpValidator):
    kind = "http_json_field"

    def __init__(self, path: str, method: str, field_name: str, expected_value: str, **target):
        super().__init__(**target)
        self.path = path
        self.method = method
        self.field_name = field_name
        self.expected_value = expected_value

    async def validate(self) -> TestCase:
        name = f"{self.method} {self.path} field '{self.field_name}' = '{self.expected_value}'"
        response = await self.request(self.method, self.path)
        value = get_field(parse_json(response.body), self.field_name)

        if value is MISSING:
            return TestCase.fail(name, f"field '{self.field_name}' not found in JSON response")
        actual = json_value_to_string(value)
        if actual != self.expected_value:
            return TestCase.fail(
                name,
                truncate(f"field '{self.field_name}' expected '{self.expected_value}', got '{actual}'"),
            )
        return TestCase.ok(name, f"field '{self.field_name}' has expected value '{self.expected_value}'")


class HttpPostJsonValidator(HttpValidator):
    """POST a JSON body; check the status and optionally one response field."""

    kind = "http_post_json"

    def __init__(
        self,
        path: str,
        body: str,
        expected_status: int,
        expected_field: Optional[Tuple[str, str]] = None,
        **target,
    ):
        super().__init__(**target)
        self.path = path
        self.body = body
        self.expected_status = expected_status
        self.expected_field = expected_field

    async def validate(self) -> TestCase:
        name = f"POST {self.path} returns {self.expected_status}"
        response = await self.request(
            "POST", self.path, [("Content-Type", "application/json")], self.body
        )

        errors = []
        if response.status_code != self.expected_status:
            errors.append(_status_mismatch(self.expected_status, response.status_code))

        if self.expected_field is not None:
            field_name, expected = self.expected_field
            try:
                value = get_field(parse_json(response.body), field_name)
            except ValidatorError as e:
                errors.append(str(e))
            else:
                if value is MISSING:
                    errors.append(f"field '{field_name}' not found in response")
                elif json_value_to_string(value) != expected:
                    errors.append(
                        f"field '{field_name}' expected '{expected}', "
                        f"got '{json_value_to_string(value)}'"
                    )

        if errors:
            return TestCase.fail(name, truncate("; ".join(errors)))
        return TestCase.ok(name, f"POST {self.path} returned {self.expected_status} as expected")


class RateLimitValidator(HttpValidator):
    """
    Spread requests evenly across a window and count 429 responses.

    One task is launched per request, window_ms / requests apart, so the
    server sees a steady rate rather than a single burst.
    """

    kind = "rate_limit"

    def __init__(
        self,
        path: str,
        method: str,
        requests: int,
        window_ms: int,
        expected_rejected: int,
        **target,
    ):
        super().__init__(**target)
        self.path = path
        self.method = method
        self.requests = requests
        self.window_ms = window_ms
        self.expected_rejected = expected_rejected

    async def validate(self) -> TestCase:
        name = f"rate limit {self.requests} requests in {self.window_ms}ms"
        delay = (self.window_ms / self.requests) / 1000 if self.requests > 0 else 0
        start = time.monotonic()

        tasks = []
        for _ in range(self.requests):
            tasks.append(asyncio.ensure_future(self.request(self.method, self.path)))
            if delay > 0:
                await asyncio.sleep(delay)

        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        rejected = succeeded = 0
        errors = []
        for outcome in outcomes:
            if isinstance(outcome, HttpResponse):
                if outcome.status_code == 429:
                    rejected += 1
                elif outcome.status_code in (200, 201):
                    succeeded += 1
            elif isinstance(outcome, ValidatorError):
                errors.append(str(outcome))
            else:
                raise outcome

        if rejected >= self.expected_rejected:
            return TestCase.ok(
                name,
                f"rate limiting working: {rejected}/{self.requests} requests rejected "
                f"(expected >= {self.expected_rejected}), {succeeded} succeeded, "
                f"completed in {elapsed_ms}ms",
            )
        message = (
            f"expected at least {self.expected_rejected} rejected requests, got {rejected}. "
            f"{succeeded} succeeded, {len(errors)} errors"
        )
        if errors:
            message = f"{message}: {fan_out_summary(len(outcomes) - len(errors), len(outcomes), errors)}"
        return TestCase.fail(name, message)
