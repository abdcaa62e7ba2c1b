"""
In-process job queue.

Jobs live only in this process: a restart loses anything buffered or
running. Each job gets its own asyncio task, so a slow job never holds back
the ones enqueued after it.
"""

import asyncio
from collections import deque

from app.infrastructure.observability.logging import get_logger
from app.jobs.queue import Job, JobCounts, JobQueue, QueueJob, QueueOptions

logger = get_logger(__name__)


class InMemoryJobQueue(JobQueue):
    """Volatile backend used when no remote Redis is configured."""

    backend = "memory"

    def __init__(self, name: str, **kwargs):
        super().__init__(name, **kwargs)
        self._buffer: deque[Job] = deque()
        self._tasks: set[asyncio.Task] = set()
        self._active = 0
        self._delayed = 0
        self._completed = 0
        self._failed = 0

    async def add(self, data: QueueJob, options: QueueOptions | None = None) -> Job:
        job = self._new_job(data, options)
        if self._handler is None:
            self._buffer.append(job)
            logger.debug(
                "Job buffered until a handler is registered", queue=self.name, job_id=job.id
            )
        else:
            self._launch(job)
        return job

    def _start_processing(self) -> None:
        while self._buffer:
            self._launch(self._buffer.popleft())

    def _launch(self, job: Job) -> None:
        self._active += 1
        task = asyncio.get_running_loop().create_task(
            self._execute(job), name=f"{self.name}:{job.id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _execute(self, job: Job) -> None:
        while True:
            error = await self._run_attempt(job)
            if error is None:
                self._active -= 1
                self._completed += 1
                await self._report_completed(job)
                return

            delay = self._retry_delay(job)
            if delay is None:
                self._active -= 1
                self._failed += 1
                await self._report_failed(job, error)
                return

            logger.info(
                "Retrying job after backoff",
                queue=self.name,
                job_id=job.id,
                next_attempt=job.attempts_made + 1,
                delay_seconds=delay,
            )
            self._active -= 1
            self._delayed += 1
            try:
                await self._sleep(delay)
            finally:
                self._delayed -= 1
            self._active += 1

    async def get_job_counts(self) -> JobCounts:
        return JobCounts(
            waiting=len(self._buffer),
            active=self._active,
            completed=self._completed,
            failed=self._failed,
            delayed=self._delayed,
        )

    async def wait_until_idle(self) -> None:
        """Wait for every running job, including ones started while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info("In-memory queue closed", queue=self.name, dropped_buffered=len(self._buffer))
