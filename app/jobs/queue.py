"""
Job queue contract shared by the Redis and in-memory backends.

A queue accepts jobs without waiting for them to run, hands each job to the
single registered handler, retries failed attempts according to the job's
backoff policy and notifies listeners when a job completes or fails for good.
"""

import asyncio
import inspect
import json
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.infrastructure.observability.logging import get_logger
from app.jobs.backoff import BackoffPolicy, compute_backoff_delay
from app.jobs.errors import HandlerAlreadyRegisteredError, JobFailedError
from app.models.domain.zoom_domain import ZoomWebhookEvent

logger = get_logger(__name__)


class JobType(str, Enum):
    MISSED_CALL = "missed_call"
    VOICEMAIL = "voicemail"
    SALES_CALL = "sales_call"


class QueueEvent(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    ERROR = "error"


class QueueJob(BaseModel):
    """A classified webhook event. The type tag is fixed once created."""

    model_config = ConfigDict(frozen=True)

    type: JobType
    event: ZoomWebhookEvent


class QueueOptions(BaseModel):
    """Per-add retry configuration."""

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(default=3, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy.none)


@dataclass(slots=True)
class JobCounts:
    """Point-in-time snapshot; not consistent across concurrent mutation."""

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(slots=True)
class Job:
    """Queue envelope around a QueueJob."""

    id: str
    queue_name: str
    data: QueueJob
    options: QueueOptions
    attempts_made: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    failed_reason: str | None = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "id": self.id,
                "queue_name": self.queue_name,
                "data": self.data.model_dump(mode="json"),
                "options": self.options.model_dump(mode="json"),
                "attempts_made": self.attempts_made,
                "created_at": self.created_at.isoformat(),
                "failed_reason": self.failed_reason,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "Job":
        payload = json.loads(raw)
        return cls(
            id=payload["id"],
            queue_name=payload["queue_name"],
            data=QueueJob.model_validate(payload["data"]),
            options=QueueOptions.model_validate(payload["options"]),
            attempts_made=int(payload.get("attempts_made", 0)),
            created_at=datetime.fromisoformat(payload["created_at"]),
            failed_reason=payload.get("failed_reason"),
        )


JobHandler = Callable[[Job], Awaitable[None]]
QueueListener = Callable[..., Any]


class JobQueue(ABC):
    """
    Capability interface implemented by every queue backend.

    Calling process() more than once on the same instance is a programmer
    error and raises HandlerAlreadyRegisteredError instead of silently
    replacing the first handler.
    """

    backend: str = "abstract"

    def __init__(
        self,
        name: str,
        default_options: QueueOptions | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.name = name
        self.default_options = default_options or QueueOptions()
        self._sleep = sleep
        self._handler: JobHandler | None = None
        self._listeners: dict[QueueEvent, list[QueueListener]] = {event: [] for event in QueueEvent}

    @abstractmethod
    async def add(self, data: QueueJob, options: QueueOptions | None = None) -> Job:
        """Accept a job into the backend and return without waiting for it to run."""

    @abstractmethod
    async def get_job_counts(self) -> JobCounts:
        """Return a snapshot of the count buckets."""

    @abstractmethod
    def _start_processing(self) -> None:
        """Begin running jobs once a handler exists."""

    async def close(self) -> None:
        """Release backend resources."""
        return None

    def process(self, handler: JobHandler) -> None:
        """
        Register the handler for this queue.

        Jobs added before registration are started in insertion order.
        Must be called from inside the running event loop.
        """
        if self._handler is not None:
            raise HandlerAlreadyRegisteredError(
                f"Queue '{self.name}' already has a handler registered", queue_name=self.name
            )
        self._handler = handler
        logger.info("Queue handler registered", queue=self.name, backend=self.backend)
        self._start_processing()

    def on(self, event: QueueEvent | str, listener: QueueListener) -> None:
        """Register a listener for completed(job), failed(job, error) or error(error)."""
        self._listeners[QueueEvent(event)].append(listener)

    @property
    def has_handler(self) -> bool:
        return self._handler is not None

    def _new_job(self, data: QueueJob, options: QueueOptions | None) -> Job:
        return Job(
            id=uuid.uuid4().hex,
            queue_name=self.name,
            data=data,
            options=options or self.default_options,
        )

    async def _run_attempt(self, job: Job) -> Exception | None:
        """Run the handler once; return the error instead of raising it."""
        job.attempts_made += 1
        try:
            await self._handler(job)
            return None
        except Exception as e:
            logger.warning(
                "Job attempt failed",
                queue=self.name,
                job_id=job.id,
                job_type=job.data.type.value,
                attempt=job.attempts_made,
                max_attempts=job.options.attempts,
                error=str(e),
                error_type=type(e).__name__,
            )
            return e

    def _retry_delay(self, job: Job) -> float | None:
        """Seconds to wait before the next attempt, or None when attempts are exhausted."""
        if job.attempts_made >= job.options.attempts:
            return None
        return compute_backoff_delay(job.options.backoff, job.attempts_made)

    async def _report_completed(self, job: Job) -> None:
        logger.info(
            "Job completed", queue=self.name, job_id=job.id, attempts=job.attempts_made
        )
        await self._emit(QueueEvent.COMPLETED, job)

    async def _report_failed(self, job: Job, error: Exception) -> None:
        job.failed_reason = str(error)
        logger.error(
            "Job failed permanently",
            queue=self.name,
            job_id=job.id,
            attempts=job.attempts_made,
            error=str(error),
        )
        await self._emit(QueueEvent.FAILED, job, error)
        await self._emit(QueueEvent.ERROR, JobFailedError(job, error))

    async def _emit(self, event: QueueEvent, *args: Any) -> None:
        """Call listeners; a listener that raises is logged and skipped."""
        for listener in list(self._listeners[event]):
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "Queue listener raised, ignoring",
                    queue=self.name,
                    queue_event=event.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
