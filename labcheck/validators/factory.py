"""
Validator factory.

Maps a parsed spec onto one validator class. The set of kinds is closed:
every name the engine understands appears in VALIDATORS below, and aliases
are constructors that preset arguments of a general validator.
"""

import logging
from typing import Callable, Dict, Optional, Union

from ..context import ValidationContext
from ..errors import ValidatorSpecError
from ..results import TestCase
from ..sandbox.validator import DockerValidator, Expectation
from .base import BaseValidator
from .compile import CanCompileValidator
from .file import FileContentsMatchValidator
from .http import (
    ConcurrentRequestsValidator,
    HttpGetCompressedValidator,
    HttpGetFileValidator,
    HttpGetValidator,
    HttpGetWithHeaderValidator,
    HttpHeaderPresentValidator,
    HttpHeaderValueValidator,
    HttpJsonExistsValidator,
    HttpJsonFieldValidator,
    HttpPostFileValidator,
    HttpPostJsonValidator,
    HttpStatusValidator,
    RateLimitValidator,
)
from .parser import ParsedValidator, parse_validator
from .port import PortValidator
from .process import (
    DEFAULT_ACCESS_TIMEOUT_MS,
    DEFAULT_STARTUP_MS,
    ConcurrentAccessValidator,
    GracefulShutdownValidator,
)
from .scenario import (
    HttpHealthCheck,
    HttpJsonFieldNested,
    HttpJsonFieldValue,
    HttpRequestWithBody,
    HttpStatusCheck,
    JobPriorityVerified,
    JobProcessingVerified,
    JobResultVerified,
    JobRetryVerified,
    JobSubmissionVerified,
    JobTimeoutReasonVerified,
    JobTimeoutVerified,
    WorkerPoolConcurrent,
    WorkerScaleDown,
    WorkerScaleUp,
)

logger = logging.getLogger(__name__)

Constructor = Callable[[ParsedValidator, ValidationContext], BaseValidator]


class NotImplementedValidator(BaseValidator):
    """Placeholder for names the engine does not know yet.

    Lets a task ship validator specs ahead of engine support: the run
    carries on and this check simply fails.
    """

    def __init__(self, name: str):
        self.name = name
        self.kind = name

    async def validate(self) -> TestCase:
        return TestCase.fail(self.name, f"validator '{self.name}' not implemented yet")


def _http(ctx: ValidationContext) -> dict:
    return {"host": ctx.host, "port": ctx.http_port}


def _scenario(ctx: ValidationContext) -> dict:
    return {"host": ctx.host, "port": ctx.scenario_port}


# ============ Protocol ============

def create_tcp_listening(p, ctx):
    return PortValidator(p.param_as_port(0), host=ctx.host)


def create_http_response_status(p, ctx):
    return HttpStatusValidator(p.param_as_int(0), **_http(ctx))


def create_http_get(p, ctx):
    return HttpGetValidator(
        p.param_as_string(0), p.param_as_int(1), p.optional_string(2), **_http(ctx)
    )


def create_http_header_present(p, ctx):
    return HttpHeaderPresentValidator(p.param_as_string(0), p.param_as_bool(1), **_http(ctx))


def create_http_header_value(p, ctx):
    return HttpHeaderValueValidator(p.param_as_string(0), p.param_as_string(1), **_http(ctx))


def create_http_get_with_header(p, ctx):
    return HttpGetWithHeaderValidator(
        p.param_as_string(0),
        p.param_as_string(1),
        p.param_as_string(2),
        p.param_as_int(3),
        p.optional_string(4),
        **_http(ctx),
    )


def create_concurrent_requests(p, ctx):
    return ConcurrentRequestsValidator(
        p.param_as_count(0), p.param_as_string(1), p.param_as_int(2), **_http(ctx)
    )


def create_http_post_file(p, ctx):
    return HttpPostFileValidator(
        p.param_as_string(0), p.param_as_string(1), p.param_as_int(2), **_http(ctx)
    )


def create_http_get_file(p, ctx):
    return HttpGetFileValidator(p.param_as_string(0), p.param_as_int(1), **_http(ctx))


def create_http_get_compressed(p, ctx):
    return HttpGetCompressedValidator(p.param_as_string(0), p.param_as_string(1), **_http(ctx))


def create_http_json_exists(p, ctx):
    return HttpJsonExistsValidator(
        p.param_as_string(0), p.param_as_string(1), p.strings_from(2), **_http(ctx)
    )


def create_http_json_field(p, ctx):
    return HttpJsonFieldValidator(
        p.param_as_string(0),
        p.param_as_string(1),
        p.param_as_string(2),
        p.param_as_string(3),
        **_http(ctx),
    )


def create_http_post_json(p, ctx):
    field_name, value = p.optional_string(3), p.optional_string(4)
    expected_field = (field_name, value) if field_name is not None and value is not None else None
    return HttpPostJsonValidator(
        p.param_as_string(0), p.param_as_string(1), p.param_as_int(2), expected_field, **_http(ctx)
    )


def create_rate_limit(p, ctx):
    return RateLimitValidator(
        p.param_as_string(0),
        p.param_as_string(1),
        p.param_as_count(2),
        p.param_as_count(3),
        p.param_as_count(4),
        **_http(ctx),
    )


# ============ Process ============

def create_graceful_shutdown(p, ctx):
    return GracefulShutdownValidator(
        p.param_as_string(0),
        p.param_as_count(1),
        expected_exit_code=p.optional_int(2, 0),
        startup_ms=p.optional_count(3, DEFAULT_STARTUP_MS),
        workspace=ctx.workspace,
    )


def create_concurrent_access(p, ctx):
    return ConcurrentAccessValidator(
        p.param_as_port(0),
        p.param_as_string(1),
        p.param_as_count(2),
        p.param_as_count(3),
        timeout_ms=p.optional_count(4, DEFAULT_ACCESS_TIMEOUT_MS),
        host=ctx.host,
    )


# ============ Workspace ============

def create_file_contents_match(p, ctx):
    return FileContentsMatchValidator(p.param_as_string(0), p.param_as_string(1), ctx.workspace)


def create_can_compile(p, ctx):
    return CanCompileValidator(p.param_as_bool(0), workspace=ctx.workspace, runtime=ctx.runtime)


# ============ Scenario ============

def create_job_submission_verified(p, ctx):
    return JobSubmissionVerified(p.optional_string(0, "test"), p.optional_string(1, "data"), **_scenario(ctx))


def create_job_processing_verified(p, ctx):
    return JobProcessingVerified(p.optional_count(0, 200), p.optional_string(1, "completed"), **_scenario(ctx))


def create_worker_pool_concurrent(p, ctx):
    return WorkerPoolConcurrent(
        p.optional_count(0, 4), p.optional_count(1, 4), p.optional_count(2, 1000), **_scenario(ctx)
    )


def create_job_result(p, ctx):
    return JobResultVerified(
        p.param_as_string(0), p.param_as_string(1), p.param_as_string(2), **_scenario(ctx)
    )


def create_job_priority(p, ctx):
    return JobPriorityVerified(p.optional_int(0, 10), p.optional_int(1, 1), **_scenario(ctx))


def create_job_timeout(p, ctx):
    return JobTimeoutVerified(p.optional_count(0, 5000), p.optional_string(1, "failed"), **_scenario(ctx))


def create_job_timeout_reason(p, ctx):
    return JobTimeoutReasonVerified(p.optional_string(0, "timeout"), **_scenario(ctx))


def create_job_retry(p, ctx):
    return JobRetryVerified(p.optional_string(0, "flaky"), p.optional_count(1, 3), **_scenario(ctx))


def create_worker_scale_up(p, ctx):
    return WorkerScaleUp(
        p.optional_count(0, 2), p.optional_count(1, 50), p.optional_count(2, 4), **_scenario(ctx)
    )


def create_worker_scale_down(p, ctx):
    return WorkerScaleDown(p.optional_count(0, 8), p.optional_count(1, 4), **_scenario(ctx))


def create_http_request(p, ctx):
    return HttpRequestWithBody(
        p.param_as_string(0),
        p.param_as_string(1),
        p.optional_string(2),
        p.optional_int(3, 200),
        **_scenario(ctx),
    )


def create_http_json_field_nested(p, ctx):
    return HttpJsonFieldNested(p.param_as_string(0), p.param_as_string(1), **_scenario(ctx))


def create_http_health_check(p, ctx):
    return HttpHealthCheck(
        p.param_as_string(0),
        p.param_as_int(1),
        p.param_as_string(2),
        p.param_as_string(3),
        **_scenario(ctx),
    )


def create_http_json_field_value(p, ctx):
    return HttpJsonFieldValue(
        p.param_as_string(0), p.param_as_string(1), p.param_as_string(2), **_scenario(ctx)
    )


def create_http_status_check(p, ctx):
    return HttpStatusCheck(p.param_as_string(0), p.param_as_int(1), **_scenario(ctx))


# ============ Sandbox ============

def create_docker(p, ctx):
    image_key = p.param_as_string(0)
    try:
        expectation = Expectation.parse(p.param_as_string(1))
    except ValidatorSpecError as e:
        raise ValidatorSpecError(f"invalid expectation: {e}") from e
    timeout = p.optional_count(2)
    return DockerValidator(image_key, expectation, timeout=timeout, workspace=ctx.workspace)


# ============ Aliases ============

def create_http_path_root(p, ctx):
    return HttpGetValidator("/", p.param_as_int(0), **_http(ctx))


def create_http_path_unknown(p, ctx):
    return HttpGetValidator("/nonexistent-path-for-testing", p.param_as_int(0), **_http(ctx))


def create_http_header_server(p, ctx):
    return HttpHeaderPresentValidator("Server", p.param_as_bool(0), **_http(ctx))


def create_http_header_date(p, ctx):
    return HttpHeaderPresentValidator("Date", p.param_as_bool(0), **_http(ctx))


def create_http_header_connection(p, ctx):
    return HttpHeaderValueValidator("Connection", p.param_as_string(0), **_http(ctx))


def create_http_echo(p, ctx):
    return HttpGetValidator(
        f"/echo/{p.param_as_string(0)}", 200, p.param_as_string(1), **_http(ctx)
    )


def create_http_user_agent(p, ctx):
    return HttpGetWithHeaderValidator(
        "/user-agent", "User-Agent", p.param_as_string(0), 200, p.param_as_string(1), **_http(ctx)
    )


def create_http_concurrent_clients(p, ctx):
    return ConcurrentRequestsValidator(p.param_as_count(0), "/", 200, **_http(ctx))


def create_http_query_param(p, ctx):
    path = f"/search?{p.param_as_string(0)}={p.param_as_string(1)}"
    return HttpGetValidator(path, 200, p.param_as_string(2), **_http(ctx))


def create_http_query_missing(p, ctx):
    return HttpGetValidator("/search", p.param_as_int(0), **_http(ctx))


def create_http_file_not_found(p, ctx):
    return HttpGetValidator(f"/files/{p.param_as_string(0)}", p.param_as_int(1), **_http(ctx))


def create_http_content_type(p, ctx):
    return HttpGetFileValidator(
        f"/files/{p.param_as_string(0)}", 200, content_type=p.param_as_string(1), **_http(ctx)
    )


def create_http_gzip_encoding(p, ctx):
    return HttpGetCompressedValidator(p.param_as_string(0), "gzip", **_http(ctx))


def create_http_file_get(p, ctx):
    return HttpGetValidator(
        f"/files/{p.param_as_string(0)}", 200, p.param_as_string(1), **_http(ctx)
    )


def create_http_file_traversal(p, ctx):
    return HttpGetValidator(f"/files/{p.param_as_string(0)}", p.param_as_int(1), **_http(ctx))


def create_http_query_encoded(p, ctx):
    return HttpGetValidator(
        f"/search?q={p.param_as_string(0)}", 200, p.param_as_string(1), **_http(ctx)
    )


def create_tcp_read_request(p, ctx):
    return HttpGetValidator("/", 200, **_http(ctx))


def create_http_keepalive(p, ctx):
    return ConcurrentRequestsValidator(p.param_as_count(0), "/", 200, **_http(ctx))


VALIDATORS: Dict[str, Constructor] = {
    "tcp_listening": create_tcp_listening,
    "http_response_status": create_http_response_status,
    "http_get": create_http_get,
    "http_header_present": create_http_header_present,
    "http_header_value": create_http_header_value,
    "http_get_with_header": create_http_get_with_header,
    "concurrent_requests": create_concurrent_requests,
    "http_post_file": create_http_post_file,
    "http_get_file": create_http_get_file,
    "http_get_compressed": create_http_get_compressed,
    "http_json_exists": create_http_json_exists,
    "http_json_field": create_http_json_field,
    "http_post_json": create_http_post_json,
    "rate_limit": create_rate_limit,
    "graceful_shutdown": create_graceful_shutdown,
    "concurrent_access": create_concurrent_access,
    "file_contents_match": create_file_contents_match,
    "can_compile": create_can_compile,
    "job_submission_verified": create_job_submission_verified,
    "job_processing_verified": create_job_processing_verified,
    "worker_pool_concurrent": create_worker_pool_concurrent,
    "job_result": create_job_result,
    "job_priority": create_job_priority,
    "job_timeout": create_job_timeout,
    "job_timeout_reason": create_job_timeout_reason,
    "job_retry": create_job_retry,
    "worker_scale_up": create_worker_scale_up,
    "worker_scale_down": create_worker_scale_down,
    "http_request": create_http_request,
    "http_json_field_nested": create_http_json_field_nested,
    "http_health_check": create_http_health_check,
    "http_json_field_value": create_http_json_field_value,
    "http_status_check": create_http_status_check,
    "docker": create_docker,
}

ALIASES: Dict[str, Constructor] = {
    "http_path": create_http_get,
    "http_path_root": create_http_path_root,
    "http_path_unknown": create_http_path_unknown,
    "http_header_server": create_http_header_server,
    "http_header_date": create_http_header_date,
    "http_header_connection": create_http_header_connection,
    "http_echo": create_http_echo,
    "http_user_agent": create_http_user_agent,
    "http_concurrent_clients": create_http_concurrent_clients,
    "http_query_param": create_http_query_param,
    "http_query_missing": create_http_query_missing,
    "http_file_not_found": create_http_file_not_found,
    "http_content_type": create_http_content_type,
    "http_gzip_encoding": create_http_gzip_encoding,
    "http_file_get": create_http_file_get,
    "http_file_traversal": create_http_file_traversal,
    "http_query_encoded": create_http_query_encoded,
    "tcp_read_request": create_tcp_read_request,
    "http_keepalive": create_http_keepalive,
}


def is_known(name: str) -> bool:
    return name in VALIDATORS or name in ALIASES


def create_from_parsed(
    parsed: ParsedValidator,
    context: Optional[ValidationContext] = None,
) -> BaseValidator:
    """
    Build the validator for a parsed spec.

    Unknown names yield a NotImplementedValidator rather than an error.

    Raises:
        ValidatorSpecError: a parameter is missing or has the wrong type
    """
    context = context or ValidationContext()
    constructor = VALIDATORS.get(parsed.name) or ALIASES.get(parsed.name)
    if constructor is None:
        logger.warning("unknown validator '%s'", parsed.name)
        return NotImplementedValidator(parsed.name)
    return constructor(parsed, context)


def create_validator(
    spec: Union[str, ParsedValidator],
    context: Optional[ValidationContext] = None,
) -> BaseValidator:
    """Parse a spec string and build its validator."""
    parsed = spec if isinstance(spec, ParsedValidator) else parse_validator(spec)
    logger.debug("parsed validator %s with %d params", parsed.name, len(parsed.params))
    return create_from_parsed(parsed, context)
