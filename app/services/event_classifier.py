"""
Zoom webhook event classification.

Maps an event's type tag (and, for a few tags, its payload) to the queue
job it should become. Ignoring an event is a normal outcome, not an error.
"""

from dataclasses import dataclass

from app.infrastructure.observability.logging import get_logger
from app.jobs.queue import JobType, QueueJob
from app.models.domain.zoom_domain import (
    CallLogPayload,
    CallPayload,
    ZoomEventType,
    ZoomWebhookEvent,
)

logger = get_logger(__name__)

CALL_ENDED_EVENTS = {ZoomEventType.CALLEE_ENDED.value, ZoomEventType.CALLER_ENDED.value}
MISSED_CALL_EVENTS = {ZoomEventType.CALLEE_MISSED.value, ZoomEventType.CALLEE_MISSED_CALL.value}
VOICEMAIL_EVENTS = {
    ZoomEventType.VOICEMAIL_RECEIVED.value,
    ZoomEventType.VOICEMAIL_TRANSCRIPT_COMPLETED.value,
}
SALES_CALL_EVENTS = {
    ZoomEventType.RECORDING_COMPLETED.value,
    ZoomEventType.RECORDING_TRANSCRIPT_COMPLETED.value,
    ZoomEventType.AI_CALL_SUMMARY_CHANGED.value,
}
OBSERVED_ONLY_EVENTS = {
    ZoomEventType.CALLEE_RINGING.value,
    ZoomEventType.CALLEE_ANSWERED.value,
    ZoomEventType.RECORDING_STARTED.value,
}


@dataclass(frozen=True, slots=True)
class ClassifiedJob:
    category: JobType
    job: QueueJob


@dataclass(frozen=True, slots=True)
class Ignored:
    reason: str


def _job(category: JobType, event: ZoomWebhookEvent) -> ClassifiedJob:
    return ClassifiedJob(category=category, job=QueueJob(type=category, event=event))


def classify_event(event: ZoomWebhookEvent) -> ClassifiedJob | Ignored:
    """
    Decide which queue, if any, an inbound event belongs to.

    Returns:
        ClassifiedJob: category plus the job to enqueue
        Ignored: nothing to do, with the reason for logging
    """
    event_type = event.event

    if event_type in CALL_ENDED_EVENTS:
        call = CallPayload.from_event(event)
        if call.is_missed():
            logger.info("Call ended unanswered", call_id=call.call_id, result=call.hangup_result)
            return _job(JobType.MISSED_CALL, event)
        logger.info("Call was answered, skipping", call_id=call.call_id, result=call.hangup_result)
        return Ignored(reason=f"call answered ({call.hangup_result or 'no result'})")

    if event_type in MISSED_CALL_EVENTS:
        return _job(JobType.MISSED_CALL, event)

    if event_type in VOICEMAIL_EVENTS:
        return _job(JobType.VOICEMAIL, event)

    if event_type == ZoomEventType.CALL_LOG_COMPLETED.value:
        log = CallLogPayload.from_event(event)
        logger.info(
            "Call log completed",
            call_id=log.call_id,
            result=log.result,
            duration=log.duration,
            has_recording=log.has_recording,
        )
        if log.is_sales_call():
            return _job(JobType.SALES_CALL, event)
        return Ignored(reason=f"call log result {log.result} handled by missed-call path")

    if event_type in SALES_CALL_EVENTS:
        return _job(JobType.SALES_CALL, event)

    if event_type in OBSERVED_ONLY_EVENTS:
        logger.info("Observed call progress event", event_type=event_type)
        return Ignored(reason="observability only")

    logger.info("Unhandled event type", event_type=event_type)
    return Ignored(reason=f"unhandled event type {event_type}")
