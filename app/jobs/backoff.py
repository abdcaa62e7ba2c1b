"""Retry delay policies for queued jobs."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class BackoffType(str, Enum):
    NONE = "none"
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class BackoffPolicy(BaseModel):
    """How long to wait before re-running a failed job. Delays are in seconds."""

    model_config = ConfigDict(frozen=True)

    type: BackoffType = BackoffType.NONE
    delay: float = Field(default=0.0, ge=0)

    @classmethod
    def none(cls) -> "BackoffPolicy":
        return cls(type=BackoffType.NONE, delay=0.0)

    @classmethod
    def fixed(cls, delay: float) -> "BackoffPolicy":
        return cls(type=BackoffType.FIXED, delay=delay)

    @classmethod
    def exponential(cls, base_delay: float) -> "BackoffPolicy":
        return cls(type=BackoffType.EXPONENTIAL, delay=base_delay)


def compute_backoff_delay(policy: BackoffPolicy | None, attempt: int) -> float:
    """
    Delay before the retry that follows a failed attempt.

    Args:
        policy: Configured backoff, None meaning retry immediately
        attempt: 1-indexed number of the attempt that just failed

    Returns:
        float: Seconds to wait. Exponential doubles per failed attempt,
        so attempt 1 waits base, attempt 2 waits 2*base, attempt 3 4*base.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    if policy is None or policy.type == BackoffType.NONE:
        return 0.0
    if policy.type == BackoffType.FIXED:
        return policy.delay
    return policy.delay * (2 ** (attempt - 1))
