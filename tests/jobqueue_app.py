"""
A small job-queue service for exercising the scenario validators.

Job types:
    sleep   runs for duration_ms, failing once job_timeout_ms is exceeded
    upper   result is the payload upper-cased
    reverse result is the payload reversed
    flaky   fails its first two attempts, then completes
    (other) completes immediately with the payload as result
"""

import asyncio
import itertools
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

FLAKY_FAILURES = 2
POLL_SECONDS = 0.02
AUTOSCALE_SECONDS = 0.05


class JobCreate(BaseModel):
    type: str
    payload: str = ""
    priority: int = 0
    duration_ms: int = 0
    max_retries: int = 3


class JobQueue:
    """Priority queue plus a resizable pool of asyncio workers."""

    def __init__(
        self,
        workers: int = 4,
        min_workers: int = 1,
        max_workers: int = 8,
        job_timeout_ms: int = 1000,
        autoscale: bool = False,
    ):
        self.target = workers
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.job_timeout = job_timeout_ms / 1000
        self.autoscale = autoscale

        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.queue: Optional[asyncio.PriorityQueue] = None
        self.workers: Set[asyncio.Task] = set()
        self.busy = 0
        self._sequence = itertools.count()
        self._scaler: Optional[asyncio.Task] = None

    # ============ Lifecycle ============

    def start(self) -> None:
        self.queue = asyncio.PriorityQueue()
        self.spawn()
        if self.autoscale:
            self._scaler = asyncio.create_task(self._autoscale())

    async def stop(self) -> None:
        tasks = list(self.workers)
        if self._scaler is not None:
            tasks.append(self._scaler)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def spawn(self) -> None:
        while len(self.workers) < self.target:
            self.workers.add(asyncio.create_task(self._worker()))

    def scale(self, count: int) -> None:
        self.target = max(0, count)
        self.spawn()

    async def _autoscale(self) -> None:
        while True:
            await asyncio.sleep(AUTOSCALE_SECONDS)
            if not self.queue.empty() and self.target < self.max_workers:
                self.scale(self.target + 1)
            elif self.queue.empty() and self.busy == 0 and self.target > self.min_workers:
                self.scale(self.target - 1)

    # ============ Jobs ============

    def submit(self, request: JobCreate) -> Dict[str, Any]:
        job = {
            "id": uuid.uuid4().hex,
            "type": request.type,
            "payload": request.payload,
            "priority": request.priority,
            "duration_ms": request.duration_ms,
            "max_retries": request.max_retries,
            "status": "pending",
            "retries": 0,
        }
        self.jobs[job["id"]] = job
        self.queue.put_nowait((-request.priority, next(self._sequence), job["id"]))
        return job

    async def _worker(self) -> None:
        me = asyncio.current_task()
        while True:
            if len(self.workers) > self.target:
                self.workers.discard(me)
                return
            try:
                _, _, job_id = self.queue.get_nowait()
            except asyncio.QueueEmpty:
                await asyncio.sleep(POLL_SECONDS)
                continue

            self.busy += 1
            try:
                await self._process(self.jobs[job_id])
            finally:
                self.busy -= 1

    async def _process(self, job: Dict[str, Any]) -> None:
        job["status"] = "processing"
        kind = job["type"]

        if kind == "sleep":
            try:
                await asyncio.wait_for(
                    asyncio.sleep(job["duration_ms"] / 1000), timeout=self.job_timeout
                )
            except asyncio.TimeoutError:
                self._finish(job, "failed", error="job exceeded timeout")
                return
            self._finish(job, "completed", result=job["payload"])
            return

        if kind == "flaky":
            while job["retries"] < FLAKY_FAILURES and job["retries"] < job["max_retries"]:
                job["retries"] += 1
            status = "completed" if job["retries"] >= FLAKY_FAILURES else "failed"
            self._finish(job, status, result=job["payload"])
            return

        if kind == "upper":
            result = job["payload"].upper()
        elif kind == "reverse":
            result = job["payload"][::-1]
        else:
            result = job["payload"]
        self._finish(job, "completed", result=result)

    @staticmethod
    def _finish(job: Dict[str, Any], status: str, result: str = None, error: str = None) -> None:
        job["status"] = status
        job["completed_at"] = datetime.now(timezone.utc).isoformat(timespec="microseconds")
        if result is not None:
            job["result"] = result
        if error is not None:
            job["error"] = error


def create_job_app(**options) -> FastAPI:
    """Build the service; options are passed to JobQueue."""
    queue = JobQueue(**options)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        queue.start()
        yield
        await queue.stop()

    app = FastAPI(title="Job Queue", lifespan=lifespan)
    app.state.queue = queue

    @app.post("/jobs", status_code=201)
    async def submit_job(request: JobCreate):
        job = queue.submit(request)
        return {"id": job["id"], "status": job["status"]}

    @app.get("/jobs/{job_id}")
    async def get_job(job_id: str):
        job = queue.jobs.get(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="job not found")
        return job

    @app.get("/workers")
    async def workers():
        return {"count": len(queue.workers)}

    @app.post("/workers/scale")
    async def scale(count: int):
        queue.scale(count)
        return {"count": queue.target}

    @app.get("/health")
    async def health():
        return {"status": "healthy", "queue": {"depth": queue.queue.qsize()}}

    return app
