# app/models/domain/sales_domain.py
"""
Sales Domain Models
Records written to the SharePoint Sales Leads / Sales Calls lists and the
Planner follow-up tasks linked from them.

Each record knows its SharePoint column mapping and which columns may still
change after the item exists.
"""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field

DEFAULT_CHANNEL = "Zoom Phone"

# SharePoint column names
COL_TITLE = "Title"
COL_CALL_ID = "CallId"
COL_CHANNEL = "Channel"
COL_PRIORITY = "Priority"
COL_STATUS = "Status"
COL_CALL_TIMESTAMP = "CallTimestamp"
COL_OWNER = "Owner"
COL_VOICEMAIL_URL = "VoicemailUrl"
COL_VOICEMAIL_TRANSCRIPT = "VoicemailTranscript"
COL_PLANNER_TASK_ID = "PlannerTaskId"
COL_CONTACT = "Contact"
COL_DURATION = "Duration"
COL_RECORDING_URL = "RecordingUrl"
COL_TRANSCRIPT = "TranscriptUrl"  # multi-line text column holding the transcript itself
COL_AI_SUMMARY = "AiSummary"


class SalesLeadRecord(BaseModel):
    """
    Prospective lead created by a missed call or voicemail.

    Only the transcript and the follow-up link change after creation.
    """

    channel: str = DEFAULT_CHANNEL
    summary: str
    priority: str = "High"
    owner: list[int] | None = None
    status: str = "New"
    call_timestamp: str
    voicemail_link: str | None = None
    transcript: str | None = None
    call_id: str
    linked_followup_id: str | None = None

    def to_list_fields(self) -> dict:
        fields = {
            COL_TITLE: self.summary,
            COL_CHANNEL: self.channel,
            COL_PRIORITY: self.priority,
            COL_STATUS: self.status,
            COL_CALL_TIMESTAMP: self.call_timestamp,
            COL_CALL_ID: self.call_id,
            COL_VOICEMAIL_TRANSCRIPT: self.transcript or "",
        }
        if self.voicemail_link:
            fields[COL_VOICEMAIL_URL] = self.voicemail_link
        if self.owner:
            fields[COL_OWNER] = self.owner
        if self.linked_followup_id:
            fields[COL_PLANNER_TASK_ID] = self.linked_followup_id
        return fields

    def mutable_patch(self) -> dict:
        """Columns an existing lead may receive from this record."""
        if self.transcript:
            return {COL_VOICEMAIL_TRANSCRIPT: self.transcript}
        return {}


class SalesCallRecord(BaseModel):
    """
    Answered or recorded call.

    Later events for the same call only fill in the link/text columns they
    carry; empty values never overwrite stored ones.
    """

    contact: str
    summary: str
    priority: str = "Medium"
    owner: list[int] | None = None
    status: str
    call_timestamp: str
    recording_link: str | None = None
    transcript: str | None = None
    ai_summary: str | None = None
    call_id: str
    duration: int = 0

    def to_list_fields(self) -> dict:
        fields = {
            COL_TITLE: self.summary,
            COL_CONTACT: self.contact,
            COL_PRIORITY: self.priority,
            COL_STATUS: self.status,
            COL_CALL_TIMESTAMP: self.call_timestamp,
            COL_CALL_ID: self.call_id,
            COL_DURATION: self.duration,
            COL_RECORDING_URL: self.recording_link or "",
            COL_TRANSCRIPT: self.transcript or "",
            COL_AI_SUMMARY: self.ai_summary or "",
        }
        if self.owner:
            fields[COL_OWNER] = self.owner
        return fields

    def mutable_patch(self) -> dict:
        """Columns an existing call item may receive from this record."""
        candidates = {
            COL_RECORDING_URL: self.recording_link,
            COL_TRANSCRIPT: self.transcript,
            COL_AI_SUMMARY: self.ai_summary,
            COL_STATUS: self.status,
        }
        return {column: value for column, value in candidates.items() if value}


class FollowupTask(BaseModel):
    """Planner task linked from at most one lead."""

    id: str | None = None
    title: str
    description: str = ""
    due_date: datetime | None = None


class UpsertResult(BaseModel):
    """Outcome of an idempotent upsert keyed by call id."""

    id: str
    linked_followup_id: str | None = None
    created: bool = False


class TaskDetails(BaseModel):
    """Planner task details with the version tag needed for conditional patches."""

    task_id: str
    description: str = ""
    etag: str = Field(default="", description="@odata.etag of the details resource")


@dataclass(slots=True)
class SoftFailResult:
    """Result of a best-effort side call that must never abort the job."""

    ok: bool
    operation: str
    error: Exception | None = None
    skipped: bool = False

    @classmethod
    def success(cls, operation: str) -> "SoftFailResult":
        return cls(ok=True, operation=operation)

    @classmethod
    def failure(cls, operation: str, error: Exception) -> "SoftFailResult":
        return cls(ok=False, operation=operation, error=error)

    @classmethod
    def skip(cls, operation: str) -> "SoftFailResult":
        return cls(ok=True, operation=operation, skipped=True)
