"""
Redis-backed job queue.

Key layout per queue (prefix defaults to "zoom-relay"):
    {prefix}:{queue}:job:{id}   JSON job body
    {prefix}:{queue}:wait       list of job ids, LPUSH in / BRPOPLPUSH out
    {prefix}:{queue}:active     in-flight list, survives a consumer crash
    {prefix}:{queue}:delayed    sorted set of ids scored by retry time
    {prefix}:{queue}:failed     list of ids that ran out of attempts
    {prefix}:{queue}:completed  counter

One consumer task per queue runs jobs one at a time; retries go through the
delayed set so they survive a restart.
"""

import asyncio
import time

from app.infrastructure.observability.logging import get_logger
from app.jobs.errors import EnqueueError
from app.jobs.queue import Job, JobCounts, JobQueue, QueueJob, QueueOptions
from app.services.redis_client import FastRedisClient

logger = get_logger(__name__)

COMPLETED_JOB_TTL_SECONDS = 24 * 3600
FAILED_JOB_TTL_SECONDS = 7 * 24 * 3600
BLOCKING_POP_TIMEOUT_SECONDS = 1
IDLE_INTERVAL_SECONDS = 0.5
ERROR_BACKOFF_SECONDS = 5.0


class RedisJobQueue(JobQueue):
    """Durable backend used when a remote Redis is configured."""

    backend = "redis"

    def __init__(
        self,
        name: str,
        redis_client: FastRedisClient,
        prefix: str = "zoom-relay",
        block_timeout: int = BLOCKING_POP_TIMEOUT_SECONDS,
        idle_interval: float = IDLE_INTERVAL_SECONDS,
        **kwargs,
    ):
        super().__init__(name, **kwargs)
        self._redis = redis_client
        self._base_key = f"{prefix}:{name}"
        self._block_timeout = block_timeout
        self._idle_interval = idle_interval
        self._consumer: asyncio.Task | None = None
        self._running = False

    def _key(self, suffix: str) -> str:
        return f"{self._base_key}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    async def add(self, data: QueueJob, options: QueueOptions | None = None) -> Job:
        job = self._new_job(data, options)

        stored = await self._redis.set_with_ttl(self._job_key(job.id), job.to_json())
        if not stored:
            raise EnqueueError(
                f"Could not store job in Redis queue '{self.name}'", queue_name=self.name
            )

        pushed = await self._redis.push_to_list(self._key("wait"), job.id)
        if not pushed:
            raise EnqueueError(
                f"Could not enqueue job in Redis queue '{self.name}'", queue_name=self.name
            )

        logger.debug("Job enqueued", queue=self.name, job_id=job.id, backend=self.backend)
        return job

    def _start_processing(self) -> None:
        self._running = True
        self._consumer = asyncio.get_running_loop().create_task(
            self._consume(), name=f"{self.name}:consumer"
        )

    async def _consume(self) -> None:
        logger.info("Redis queue consumer started", queue=self.name)
        while self._running:
            try:
                await self._redis.promote_due(self._key("delayed"), self._key("wait"))

                job_id = await self._redis.pop_to_inflight(
                    self._key("wait"), self._key("active"), timeout=self._block_timeout
                )
                if not job_id:
                    await self._sleep(self._idle_interval)
                    continue

                job = await self._load(job_id)
                if job is not None:
                    await self._execute(job)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Redis queue consumer error",
                    queue=self.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self._sleep(ERROR_BACKOFF_SECONDS)

    async def _load(self, job_id: str) -> Job | None:
        """
        Read a claimed job body.

        A Redis error hands the id back to the wait list and re-raises so the
        consumer backs off. A missing body is dropped; an unreadable one is
        moved to the failed list.
        """
        try:
            raw = await self._redis.get_or_raise(self._job_key(job_id))
        except Exception:
            # the id stays in active when the push back fails too
            if await self._redis.push_to_list(self._key("wait"), job_id, left=False):
                await self._redis.ack_from_inflight(self._key("active"), job_id)
            raise

        if raw is None:
            logger.warning("Job body missing, dropping id", queue=self.name, job_id=job_id)
            await self._redis.ack_from_inflight(self._key("active"), job_id)
            return None

        try:
            return Job.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(
                "Job body unreadable, moving to failed",
                queue=self.name,
                job_id=job_id,
                error=str(e),
            )
            await self._redis.push_to_list(self._key("failed"), job_id)
            await self._redis.ack_from_inflight(self._key("active"), job_id)
            return None

    async def _execute(self, job: Job) -> None:
        error = await self._run_attempt(job)

        if error is None:
            await self._redis.set_with_ttl(
                self._job_key(job.id), job.to_json(), COMPLETED_JOB_TTL_SECONDS
            )
            await self._redis.incr(self._key("completed"))
            await self._redis.ack_from_inflight(self._key("active"), job.id)
            await self._report_completed(job)
            return

        delay = self._retry_delay(job)
        if delay is None:
            job.failed_reason = str(error)
            await self._redis.set_with_ttl(
                self._job_key(job.id), job.to_json(), FAILED_JOB_TTL_SECONDS
            )
            await self._redis.push_to_list(self._key("failed"), job.id)
            await self._redis.ack_from_inflight(self._key("active"), job.id)
            await self._report_failed(job, error)
            return

        logger.info(
            "Retrying job after backoff",
            queue=self.name,
            job_id=job.id,
            next_attempt=job.attempts_made + 1,
            delay_seconds=delay,
        )
        # schedule before ack so a crash in between never loses the job
        await self._redis.set_with_ttl(self._job_key(job.id), job.to_json())
        await self._redis.schedule(self._key("delayed"), job.id, time.time() + delay)
        await self._redis.ack_from_inflight(self._key("active"), job.id)

    async def get_job_counts(self) -> JobCounts:
        completed = await self._redis.get(self._key("completed"))
        return JobCounts(
            waiting=await self._redis.list_length(self._key("wait")),
            active=await self._redis.list_length(self._key("active")),
            completed=int(completed) if completed else 0,
            failed=await self._redis.list_length(self._key("failed")),
            delayed=await self._redis.sorted_set_size(self._key("delayed")),
        )

    async def close(self) -> None:
        self._running = False
        if self._consumer:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        logger.info("Redis queue consumer stopped", queue=self.name)
