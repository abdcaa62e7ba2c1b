"""
Queue handlers for the three call queues.

Each handler turns one classified Zoom event into sales records, runs the
idempotent upserts and posts a best effort Teams notification. Any exception
that escapes a handler fails the attempt and the queue retries it.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Protocol

from app.infrastructure.observability.logging import get_logger
from app.jobs.queue import Job
from app.models.domain.sales_domain import (
    FollowupTask,
    SalesCallRecord,
    SalesLeadRecord,
    SoftFailResult,
    UpsertResult,
)
from app.models.domain.zoom_domain import (
    CALL_CALLER_NAME_FIELDS,
    CALL_CALLER_PHONE_FIELDS,
    UNKNOWN_CALLER,
    AiSummaryPayload,
    CallLogPayload,
    CallPayload,
    RecordingPayload,
    VoicemailPayload,
    ZoomEventType,
    first_present,
    normalize_timestamp,
)
from app.services.sales_records_service import SalesRecordsService
from app.services.zoom.zoom_client import parse_transcript

logger = get_logger(__name__)

FOLLOWUP_DUE_AFTER = timedelta(days=1)
SALES_CALL_PRIORITY = "Medium"


class CallDataSource(Protocol):
    """Zoom lookups the handlers depend on (ZoomService)."""

    async def get_call_details(self, call_id: str) -> dict: ...

    async def get_recording(self, call_id: str) -> dict: ...

    async def download_file(self, url: str) -> str: ...

    async def get_call_summary(self, call_id: str) -> str: ...


class Notifier(Protocol):
    async def post_notification(self, message: str, title: str = ...) -> SoftFailResult: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


def display_time(timestamp: str) -> str:
    """Human readable form of an ISO timestamp for task and Teams text."""
    try:
        parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return timestamp
    return parsed.strftime("%Y-%m-%d %H:%M UTC")


def _contact(name: str, phone: str) -> str:
    return f"{name} ({phone})"


class CallProcessor:
    """Handlers registered on the missed-call, voicemail and sales-call queues."""

    def __init__(
        self,
        records: SalesRecordsService,
        zoom: CallDataSource,
        notifier: Notifier,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.records = records
        self.zoom = zoom
        self.notifier = notifier
        self._clock = clock

    def _due_date(self) -> datetime:
        return self._clock() + FOLLOWUP_DUE_AFTER

    async def _notify(self, message: str, title: str) -> None:
        result = await self.notifier.post_notification(message, title)
        if not result.ok:
            logger.warning("Teams notification failed, continuing", error=str(result.error))

    async def process_missed_call(self, job: Job) -> None:
        call = CallPayload.from_event(job.data.event)
        logger.info("Processing missed call", job_id=job.id, call_id=call.call_id)

        lead = SalesLeadRecord(
            summary=f"Missed call from {call.caller_name}",
            call_timestamp=call.call_time,
            call_id=call.call_id,
        )
        details = (
            f"Call ID: {call.call_id}\n"
            f"Caller: {call.caller_name}\n"
            f"Phone: {call.caller_phone}\n"
            f"Time: {display_time(call.call_time)}\n"
            f"Duration: {call.duration}s\n"
            "\n"
            "Please follow up with this missed call."
        )
        task = FollowupTask(
            title=f"Follow up: Missed call from {call.caller_name}",
            description=details,
            due_date=self._due_date(),
        )

        result = await self.records.record_lead_with_followup(lead, task)

        message = (
            "<h2>New Sales Lead - Missed Call</h2>"
            f"<p><strong>Caller:</strong> {call.caller_name}</p>"
            f"<p><strong>Phone:</strong> {call.caller_phone}</p>"
            f"<p><strong>Time:</strong> {display_time(call.call_time)}</p>"
            "<p><strong>Status:</strong> Needs Follow-up</p>"
            "<p>A task has been created in Planner for follow-up.</p>"
        )
        await self._notify(message, "New Sales Lead - Missed Call")
        logger.info(
            "Missed call processed",
            job_id=job.id,
            item_id=result.id,
            task_id=result.linked_followup_id,
        )

    async def process_voicemail(self, job: Job) -> None:
        voicemail = VoicemailPayload.from_event(job.data.event)
        logger.info(
            "Processing voicemail",
            job_id=job.id,
            voicemail_id=voicemail.voicemail_id,
            call_id=voicemail.call_id,
            has_transcript=bool(voicemail.transcript),
        )

        lead = SalesLeadRecord(
            summary=f"Voicemail from {voicemail.caller_name}",
            call_timestamp=voicemail.call_time,
            voicemail_link=voicemail.download_url or None,
            transcript=voicemail.transcript or None,
            call_id=voicemail.call_id,
        )
        details = (
            f"Voicemail ID: {voicemail.voicemail_id}\n"
            f"Caller: {voicemail.caller_name}\n"
            f"Phone: {voicemail.caller_phone}\n"
            f"Time: {display_time(voicemail.call_time)}\n"
            f"Duration: {voicemail.duration}s\n"
            "\n"
            f"Voicemail Recording: {voicemail.download_url}\n"
        )
        if voicemail.transcript:
            details += f"\nTranscript:\n{voicemail.transcript}\n"
        details += "\nPlease listen to the voicemail and follow up."

        task = FollowupTask(
            title=f"Follow up: Voicemail from {voicemail.caller_name}",
            description=details,
            due_date=self._due_date(),
        )

        result = await self.records.record_lead_with_followup(lead, task)

        # voicemail_received usually arrives before the transcript; notify once
        if voicemail.transcript:
            message = (
                "<h2>New Sales Lead - Voicemail</h2>"
                f"<p><strong>Caller:</strong> {voicemail.caller_name}</p>"
                f"<p><strong>Phone:</strong> {voicemail.caller_phone}</p>"
                f"<p><strong>Time:</strong> {display_time(voicemail.call_time)}</p>"
                f"<p><strong>Duration:</strong> {voicemail.duration}s</p>"
                f'<p><a href="{voicemail.download_url}">Listen to Voicemail</a></p>'
                "<p><strong>Transcript:</strong></p>"
                f"<blockquote>{voicemail.transcript}</blockquote>"
                "<p>A task has been created in Planner for follow-up.</p>"
            )
            await self._notify(message, "New Sales Lead - Voicemail")
        else:
            logger.info("Skipping Teams notification until transcript arrives", job_id=job.id)

        logger.info(
            "Voicemail processed",
            job_id=job.id,
            item_id=result.id,
            task_id=result.linked_followup_id,
        )

    async def process_sales_call(self, job: Job) -> None:
        event = job.data.event
        logger.info("Processing sales call", job_id=job.id, event_type=event.event)

        if event.event == ZoomEventType.CALL_LOG_COMPLETED.value:
            record = self._record_from_call_log(CallLogPayload.from_event(event))
        elif event.event == ZoomEventType.RECORDING_COMPLETED.value:
            record = self._record_from_recording(RecordingPayload.from_event(event))
        elif event.event == ZoomEventType.RECORDING_TRANSCRIPT_COMPLETED.value:
            record = await self._record_from_transcript(RecordingPayload.from_event(event))
        elif event.event == ZoomEventType.AI_CALL_SUMMARY_CHANGED.value:
            record = await self._record_from_summary(AiSummaryPayload.from_event(event))
        else:
            logger.warning("Unhandled event type in sales call queue", event_type=event.event)
            return

        result = await self.records.upsert_sales_call(record)
        logger.info(
            "Sales call processed",
            job_id=job.id,
            item_id=result.id,
            created=result.created,
            status=record.status,
        )

    def _record_from_call_log(self, log: CallLogPayload) -> SalesCallRecord:
        return SalesCallRecord(
            contact=_contact(log.caller_name, log.caller_phone),
            summary=log.caller_name,
            status="Completed",
            call_timestamp=log.call_time,
            call_id=log.call_id,
            duration=log.duration,
        )

    def _record_from_recording(self, recording: RecordingPayload) -> SalesCallRecord:
        return SalesCallRecord(
            contact=_contact(recording.caller_name, recording.caller_phone),
            summary=recording.caller_name,
            status="Recorded",
            call_timestamp=recording.call_time,
            call_id=recording.call_id,
            duration=recording.duration,
            recording_link=recording.download_url or None,
        )

    async def _record_from_transcript(self, recording: RecordingPayload) -> SalesCallRecord:
        transcript = ""
        if recording.transcript_download_url:
            raw = await self.zoom.download_file(recording.transcript_download_url)
            transcript = parse_transcript(raw) if raw else ""

        ai_summary = await self.zoom.get_call_summary(recording.call_id)

        return SalesCallRecord(
            contact=_contact(recording.caller_name, recording.caller_phone),
            summary=recording.caller_name,
            status="Transcript Available",
            call_timestamp=recording.call_time,
            call_id=recording.call_id,
            duration=recording.duration,
            transcript=transcript or None,
            ai_summary=ai_summary or None,
        )

    async def _record_from_summary(self, payload: AiSummaryPayload) -> SalesCallRecord:
        ai_summary = await self.zoom.get_call_summary(payload.call_id)
        # normally patches an existing item; these values only matter on create
        return SalesCallRecord(
            contact="Pending Lookup",
            summary="AI Summary Update",
            status="Summary Available",
            call_timestamp=normalize_timestamp(self._clock()),
            call_id=payload.call_id,
            ai_summary=ai_summary or None,
        )

    async def log_call(
        self,
        call_id: str,
        contact: str | None = None,
        summary: str | None = None,
        priority: str | None = None,
        status: str | None = None,
    ) -> UpsertResult:
        """Record an answered call on demand from Zoom call history."""
        details = await self.zoom.get_call_details(call_id)
        recording = await self.zoom.get_recording(call_id)

        caller = str(first_present(details, *CALL_CALLER_NAME_FIELDS, default=UNKNOWN_CALLER))
        phone = str(first_present(details, *CALL_CALLER_PHONE_FIELDS, default=UNKNOWN_CALLER))

        record = SalesCallRecord(
            contact=contact or caller or phone,
            summary=summary or caller or phone,
            priority=priority or SALES_CALL_PRIORITY,
            status=status or "Completed",
            call_timestamp=normalize_timestamp(first_present(details, "date_time", "start_time")),
            recording_link=recording.get("url") or None,
            transcript=recording.get("transcript") or None,
            call_id=str(first_present(details, "call_id", default=call_id)),
            duration=int(first_present(details, "duration", default=0) or 0),
        )
        logger.info("Logging answered call", call_id=record.call_id, contact=record.contact)
        return await self.records.upsert_sales_call(record)
