"""
Error taxonomy for the job queues.

EnqueueError is raised to the caller of add(); everything raised inside a
handler is treated as a HandlerError by the retry loop, and a job that runs
out of attempts is reported to listeners as a JobFailedError.
"""


class QueueError(Exception):
    """Base class for queue errors."""

    def __init__(self, message: str, queue_name: str | None = None):
        super().__init__(message)
        self.queue_name = queue_name


class EnqueueError(QueueError):
    """The backend could not accept a job (broker unreachable)."""


class HandlerAlreadyRegisteredError(QueueError):
    """process() was called twice on the same queue instance."""


class HandlerError(Exception):
    """A job handler failed; the queue retries it if attempts remain."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


class JobFailedError(QueueError):
    """Terminal failure of a job after its last attempt."""

    def __init__(self, job, last_error: BaseException):
        super().__init__(
            f"Job {job.id} failed after {job.attempts_made} attempt(s): {last_error}",
            queue_name=job.queue_name,
        )
        self.job = job
        self.last_error = last_error
