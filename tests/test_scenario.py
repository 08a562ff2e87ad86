"""Tests for the job-queue scenario validators, run against a live service."""

import json

import pytest

from labcheck.errors import ScenarioStepError
from labcheck.validators.http import http_request
from labcheck.validators.scenario import (
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

from servers import http_response

HOST = "127.0.0.1"


@pytest.fixture
def queue_port(job_server):
    """A four-worker queue with a 300ms job timeout."""
    return job_server(workers=4, job_timeout_ms=300)


class TestJobSubmission:
    """Test submit-and-read-back."""

    async def test_verified(self, queue_port):
        """A stored job passes."""
        case = await JobSubmissionVerified(host=HOST, port=queue_port).validate()
        assert case.passed, case.message
        assert case.name == "job submission verified"
        assert case.message.endswith("submitted and verified in storage")

    async def test_not_stored(self, raw_server):
        """A job that cannot be read back fails."""
        def handler(request):
            if request.method == "POST":
                return http_response(201, json.dumps({"id": "abc"}))
            return http_response(404, reason="Not Found")

        port = await raw_server(handler)
        case = await JobSubmissionVerified(host=HOST, port=port).validate()
        assert not case.passed
        assert case.message == "GET /jobs/abc expected 200, got 404 - job not stored"

    async def test_rejected_submission(self, raw_server):
        """A non-201 submission fails."""
        port = await raw_server(http_response(400, reason="Bad Request"))
        case = await JobSubmissionVerified(host=HOST, port=port).validate()
        assert case.message == "POST /jobs expected 201, got 400"

    async def test_numeric_id(self, raw_server):
        """Integer ids are accepted and compared as text."""
        port = await raw_server(lambda request: http_response(
            201 if request.method == "POST" else 200, json.dumps({"id": 42})
        ))
        case = await JobSubmissionVerified(host=HOST, port=port).validate()
        assert case.passed, case.message
        assert raw_server.requests[1].path == "/jobs/42"

    async def test_missing_id(self, raw_server):
        """A submission reply without an id is a step error."""
        port = await raw_server(http_response(201, "{}"))
        with pytest.raises(ScenarioStepError, match=r"step 1 \(POST /jobs\): response missing 'id' field"):
            await JobSubmissionVerified(host=HOST, port=port).validate()

    async def test_unreachable(self, closed_port):
        """A transport failure names the step."""
        with pytest.raises(ScenarioStepError) as exc:
            await JobSubmissionVerified(host=HOST, port=closed_port).validate()
        assert exc.value.step == 1
        assert exc.value.label == "POST /jobs"
        assert "connection failed" in exc.value.reason


class TestJobLifecycle:
    """Test processing, results, timeouts and retries."""

    async def test_processing(self, queue_port):
        """A quick job reaches completed."""
        validator = JobProcessingVerified(300, "completed", host=HOST, port=queue_port)
        case = await validator.validate()
        assert case.passed, case.message

    async def test_processing_wrong_status(self, queue_port):
        """A status other than the expected one fails."""
        validator = JobProcessingVerified(300, "archived", host=HOST, port=queue_port)
        case = await validator.validate()
        assert case.message == "expected status 'archived', got 'completed'"

    async def test_result(self, queue_port):
        """The job result is compared."""
        validator = JobResultVerified("upper", "hello", "HELLO", host=HOST, port=queue_port)
        validator.wait_ms = 300
        case = await validator.validate()
        assert case.passed, case.message
        assert case.name == "job result: upper → HELLO"

    async def test_wrong_result(self, queue_port):
        """A different result fails."""
        validator = JobResultVerified("reverse", "abc", "abc", host=HOST, port=queue_port)
        validator.wait_ms = 300
        case = await validator.validate()
        assert case.message == "expected result 'abc', got 'cba'"

    async def test_timeout(self, queue_port):
        """A job slower than the server limit ends failed."""
        validator = JobTimeoutVerified(1000, "failed", host=HOST, port=queue_port)
        validator.wait_ms = 700
        case = await validator.validate()
        assert case.passed, case.message

    async def test_timeout_reason(self, queue_port):
        """The failure reason mentions the timeout."""
        validator = JobTimeoutReasonVerified("timeout", host=HOST, port=queue_port)
        validator.job_duration_ms = 1000
        validator.wait_ms = 700
        case = await validator.validate()
        assert case.passed, case.message
        assert case.message == "timeout reason correctly set: job exceeded timeout"

    async def test_retry(self, queue_port):
        """Retries are read from the job."""
        validator = JobRetryVerified("flaky", 3, host=HOST, port=queue_port)
        validator.wait_ms = 300
        case = await validator.validate()
        assert case.passed, case.message
        assert case.message == "job retry tracked: 2 retries"

    async def test_retry_not_tracked(self, queue_port):
        """A job with no retries fails."""
        validator = JobRetryVerified("echo", 3, host=HOST, port=queue_port)
        validator.wait_ms = 300
        case = await validator.validate()
        assert not case.passed


class TestWorkers:
    """Test concurrency, priority and pool sizing."""

    async def test_pool_concurrent(self, queue_port):
        """Four workers run four jobs together."""
        validator = WorkerPoolConcurrent(4, 4, 3000, host=HOST, port=queue_port)
        validator.job_duration_ms = 200
        case = await validator.validate()
        assert case.passed, case.message
        assert case.message.startswith("concurrent processing confirmed: 4 jobs")

    async def test_pool_serial(self, job_server):
        """A single worker cannot show concurrency."""
        port = job_server(workers=1, job_timeout_ms=1000)
        validator = WorkerPoolConcurrent(4, 4, 5000, host=HOST, port=port)
        validator.job_duration_ms = 100
        case = await validator.validate()
        assert not case.passed
        assert "job(s) processing at same time" in case.message

    async def test_priority(self, job_server):
        """A later high-priority job overtakes a queued low-priority one."""
        port = job_server(workers=1, job_timeout_ms=2000)
        blocker = json.dumps({"type": "sleep", "payload": "block", "duration_ms": 200})
        await http_request(HOST, port, "POST", "/jobs", [("Content-Type", "application/json")], blocker)

        validator = JobPriorityVerified(10, 1, host=HOST, port=port)
        validator.job_duration_ms = 50
        validator.wait_ms = 700
        case = await validator.validate()
        assert case.passed, case.message

    async def test_scale_up(self, job_server):
        """A backlog grows the pool."""
        port = job_server(workers=2, min_workers=2, max_workers=8, job_timeout_ms=3000, autoscale=True)
        validator = WorkerScaleUp(2, 20, 4, host=HOST, port=port)
        validator.job_duration_ms = 1000
        validator.wait_ms = 500
        case = await validator.validate()
        assert case.passed, case.message
        assert case.message.startswith("workers scaled from 2 to ")

    async def test_scale_down(self, job_server):
        """An idle pool shrinks."""
        port = job_server(workers=2, min_workers=2, autoscale=True)
        validator = WorkerScaleDown(8, 4, host=HOST, port=port)
        validator.wait_ms = 800
        case = await validator.validate()
        assert case.passed, case.message

    async def test_no_scale_down(self, job_server):
        """A fixed pool stays at the forced size."""
        port = job_server(workers=2)
        validator = WorkerScaleDown(8, 4, host=HOST, port=port)
        validator.wait_ms = 200
        case = await validator.validate()
        assert not case.passed
        assert case.message == "workers still at 8 (expected <= 4)"


class TestScenarioHttp:
    """Test the generic HTTP scenario checks."""

    async def test_request_with_body(self, queue_port):
        """A POST with a JSON body is sent as-is."""
        validator = HttpRequestWithBody("POST", "/jobs", '{"type": "test"}', 201, host=HOST, port=queue_port)
        case = await validator.validate()
        assert case.passed, case.message

    async def test_request_unreachable(self, closed_port):
        """A transport failure is a step error."""
        validator = HttpRequestWithBody("GET", "/", host=HOST, port=closed_port)
        with pytest.raises(ScenarioStepError, match=r"step 1 \(GET /\)"):
            await validator.validate()

    async def test_health_check(self, queue_port):
        """Status and one field are checked."""
        validator = HttpHealthCheck("/health", 200, "status", "healthy", host=HOST, port=queue_port)
        case = await validator.validate()
        assert case.passed, case.message

    async def test_nested_field(self, queue_port):
        """Dot paths reach nested objects."""
        present = await HttpJsonFieldNested("/health", "queue.depth", host=HOST, port=queue_port).validate()
        absent = await HttpJsonFieldNested("/health", "queue.size", host=HOST, port=queue_port).validate()
        assert present.passed
        assert not absent.passed
        assert absent.message == "field 'queue.size' not found"

    async def test_nested_value(self, queue_port):
        """Nested numbers compare by their JSON text."""
        validator = HttpJsonFieldValue("/health", "queue.depth", "0", host=HOST, port=queue_port)
        case = await validator.validate()
        assert case.passed, case.message

    async def test_status_check(self, queue_port):
        """Unknown jobs return 404."""
        case = await HttpStatusCheck("/jobs/missing", 404, host=HOST, port=queue_port).validate()
        assert case.passed
        assert case.name == "GET /jobs/missing → 404"
