"""
Orchestration between webhook intake and the call queues.

Owns one queue per job category, maps classifier output onto them and wires
the CallProcessor handlers plus logging listeners once the app starts.
"""

import asyncio

from app.config import Settings, settings
from app.infrastructure.observability.logging import get_logger
from app.jobs.backoff import BackoffPolicy
from app.jobs.errors import JobFailedError
from app.jobs.factory import create_job_queue
from app.jobs.queue import Job, JobQueue, JobType, QueueEvent, QueueJob, QueueOptions
from app.services.event_classifier import ClassifiedJob
from app.services.redis_client import FastRedisClient

logger = get_logger(__name__)

MISSED_CALL_QUEUE = "missed-calls"
VOICEMAIL_QUEUE = "voicemails"
SALES_CALL_QUEUE = "sales-calls"

QUEUE_NAMES = {
    JobType.MISSED_CALL: MISSED_CALL_QUEUE,
    JobType.VOICEMAIL: VOICEMAIL_QUEUE,
    JobType.SALES_CALL: SALES_CALL_QUEUE,
}

# keys of the queue-status response
STATS_KEYS = {
    JobType.MISSED_CALL: "missedCalls",
    JobType.VOICEMAIL: "voicemails",
    JobType.SALES_CALL: "salesCalls",
}


def default_queue_options(app_settings: Settings) -> QueueOptions:
    return QueueOptions(
        attempts=app_settings.QUEUE_ATTEMPTS,
        backoff=BackoffPolicy.exponential(app_settings.QUEUE_BACKOFF_DELAY_SECONDS),
    )


class QueueService:
    """The three independent call queues behind one facade."""

    def __init__(
        self,
        app_settings: Settings | None = None,
        redis_client: FastRedisClient | None = None,
        queues: dict[JobType, JobQueue] | None = None,
    ):
        app_settings = app_settings or settings
        self.options = default_queue_options(app_settings)

        if queues is None:
            queues = {
                job_type: create_job_queue(
                    name,
                    app_settings=app_settings,
                    redis_client=redis_client,
                    default_options=self.options,
                )
                for job_type, name in QUEUE_NAMES.items()
            }
        self.queues = queues

        backends = {queue.backend for queue in self.queues.values()}
        logger.info("Queue service initialized", backends=sorted(backends))

    def queue_for(self, job_type: JobType) -> JobQueue:
        return self.queues[job_type]

    async def _add(
        self, job_type: JobType, job: QueueJob, options: QueueOptions | None = None
    ) -> Job:
        queued = await self.queue_for(job_type).add(job, options or self.options)
        logger.info(
            "Job enqueued",
            queue=QUEUE_NAMES[job_type],
            job_id=queued.id,
            event_type=job.event.event,
        )
        return queued

    async def add_missed_call(self, job: QueueJob, options: QueueOptions | None = None) -> Job:
        return await self._add(JobType.MISSED_CALL, job, options)

    async def add_voicemail(self, job: QueueJob, options: QueueOptions | None = None) -> Job:
        return await self._add(JobType.VOICEMAIL, job, options)

    async def add_sales_call(self, job: QueueJob, options: QueueOptions | None = None) -> Job:
        return await self._add(JobType.SALES_CALL, job, options)

    async def enqueue(
        self, classified: ClassifiedJob, options: QueueOptions | None = None
    ) -> Job:
        """Send a classifier result to the queue for its category."""
        return await self._add(classified.category, classified.job, options)

    async def get_queue_stats(self) -> dict[str, dict[str, int]]:
        job_types = list(self.queues)
        counts = await asyncio.gather(*(self.queues[t].get_job_counts() for t in job_types))
        return {STATS_KEYS[t]: c.to_dict() for t, c in zip(job_types, counts, strict=True)}

    def start_processors(self, processor) -> None:
        """Register the CallProcessor handlers and lifecycle logging listeners."""
        handlers = {
            JobType.MISSED_CALL: processor.process_missed_call,
            JobType.VOICEMAIL: processor.process_voicemail,
            JobType.SALES_CALL: processor.process_sales_call,
        }
        for job_type, queue in self.queues.items():
            self._attach_listeners(queue)
            queue.process(handlers[job_type])
        logger.info("Queue processors started", queues=[q.name for q in self.queues.values()])

    def _attach_listeners(self, queue: JobQueue) -> None:
        def on_completed(job: Job) -> None:
            logger.info("Job completed", queue=queue.name, job_id=job.id)

        def on_failed(job: Job, error: Exception) -> None:
            logger.error(
                "Job failed",
                queue=queue.name,
                job_id=job.id,
                attempts=job.attempts_made,
                error=str(error),
            )

        def on_error(error: Exception) -> None:
            job_id = error.job.id if isinstance(error, JobFailedError) else None
            logger.error("Queue error", queue=queue.name, job_id=job_id, error=str(error))

        queue.on(QueueEvent.COMPLETED, on_completed)
        queue.on(QueueEvent.FAILED, on_failed)
        queue.on(QueueEvent.ERROR, on_error)

    async def close(self) -> None:
        for queue in self.queues.values():
            await queue.close()
        logger.info("Queue service closed")
