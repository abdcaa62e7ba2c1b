# app/models/domain/zoom_domain.py
"""
Zoom Phone Domain Models
Normalized views over Zoom Phone webhook payloads.

Zoom names the same fact differently depending on the event subtype
(handup_result vs result, caller.name vs caller_name, transcription.content
vs transcript). Each payload variant below has one normalizer that picks the
first present candidate field, so handlers never read raw payload keys.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_CALLER = "Unknown"

# hangup results that mean nobody picked up
MISSED_CALL_RESULTS = {"Call Canceled", "Voicemail", "No Answer"}

# call log results handled by the missed-call / voicemail paths instead
NON_SALES_CALL_LOG_RESULTS = {"Missed", "Voicemail"}

# candidate field names, most specific first
HANGUP_RESULT_FIELDS = ("handup_result", "hangup_result", "result")
CALL_CALLER_NAME_FIELDS = ("caller.name", "caller.phone_number", "caller_name", "caller_number")
CALL_CALLER_PHONE_FIELDS = ("caller.phone_number", "caller_number")
CALLER_NAME_FIELDS = ("caller_name", "caller_number")
VOICEMAIL_TRANSCRIPT_FIELDS = ("transcription.content", "transcript")


class ZoomEventType(str, Enum):
    CALLEE_ENDED = "phone.callee_ended"
    CALLER_ENDED = "phone.caller_ended"
    CALLEE_MISSED = "phone.callee_missed"
    CALLEE_MISSED_CALL = "phone.callee_missed_call"
    VOICEMAIL_RECEIVED = "phone.voicemail_received"
    VOICEMAIL_TRANSCRIPT_COMPLETED = "phone.voicemail_transcript_completed"
    CALL_LOG_COMPLETED = "phone.callee_call_log_completed"
    RECORDING_STARTED = "phone.recording_started"
    RECORDING_COMPLETED = "phone.recording_completed"
    RECORDING_TRANSCRIPT_COMPLETED = "phone.recording_transcript_completed"
    AI_CALL_SUMMARY_CHANGED = "phone.ai_call_summary_changed"
    CALLEE_RINGING = "phone.callee_ringing"
    CALLEE_ANSWERED = "phone.callee_answered"


class ZoomWebhookEvent(BaseModel):
    """Normalized inbound webhook: type tag plus opaque payload."""

    model_config = ConfigDict(extra="allow")

    event: str
    event_ts: int | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    def payload_object(self) -> dict[str, Any]:
        """Return payload.object, or an empty dict when Zoom omitted it."""
        obj = self.payload.get("object")
        return obj if isinstance(obj, dict) else {}


def _lookup(source: dict[str, Any], path: str) -> Any:
    """Resolve a dotted path such as 'caller.name' against nested dicts."""
    current: Any = source
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def first_present(source: dict[str, Any], *paths: str, default: Any = None) -> Any:
    """Return the first candidate field that is neither missing, None nor empty."""
    for path in paths:
        value = _lookup(source, path)
        if value is not None and value != "":
            return value
    return default


def _first_item(obj: dict[str, Any], key: str) -> dict[str, Any]:
    items = obj.get(key)
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def normalize_timestamp(value: Any) -> str:
    """
    Convert a Zoom timestamp into an ISO-8601 UTC string.

    Missing or unparseable values fall back to the current time, matching
    how the record store expects CallTimestamp to always be set.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            parsed = datetime.now(UTC)
    else:
        parsed = datetime.now(UTC)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).isoformat().replace("+00:00", "Z")


class CallPayload(BaseModel):
    """Call-ended and missed-call events (payload.object is the call)."""

    call_id: str = ""
    hangup_result: str = ""
    caller_name: str = UNKNOWN_CALLER
    caller_phone: str = UNKNOWN_CALLER
    call_time: str = ""
    duration: int = 0

    @classmethod
    def from_event(cls, event: ZoomWebhookEvent) -> "CallPayload":
        obj = event.payload_object()
        return cls(
            call_id=str(first_present(obj, "call_id", "id", default="")),
            hangup_result=str(first_present(obj, *HANGUP_RESULT_FIELDS, default="")),
            caller_name=str(first_present(obj, *CALL_CALLER_NAME_FIELDS, default=UNKNOWN_CALLER)),
            caller_phone=str(first_present(obj, *CALL_CALLER_PHONE_FIELDS, default=UNKNOWN_CALLER)),
            call_time=normalize_timestamp(
                first_present(obj, "date_time", "ringing_start_time", "call_end_time", "start_time")
            ),
            duration=_as_int(first_present(obj, "duration", default=0)),
        )

    def is_missed(self) -> bool:
        """A call counts as missed when the hangup result says nobody answered."""
        if self.hangup_result in MISSED_CALL_RESULTS:
            return True
        return "missed" in self.hangup_result.lower()


class VoicemailPayload(BaseModel):
    """voicemail_received and voicemail_transcript_completed events."""

    voicemail_id: str = ""
    call_id: str = ""
    caller_name: str = UNKNOWN_CALLER
    caller_phone: str = UNKNOWN_CALLER
    call_time: str = ""
    duration: int = 0
    download_url: str = ""
    transcript: str = ""

    @classmethod
    def from_event(cls, event: ZoomWebhookEvent) -> "VoicemailPayload":
        obj = event.payload_object()
        voicemail_id = str(first_present(obj, "id", default=""))
        return cls(
            voicemail_id=voicemail_id,
            call_id=str(first_present(obj, "call_id", default=voicemail_id)),
            caller_name=str(first_present(obj, *CALLER_NAME_FIELDS, default=UNKNOWN_CALLER)),
            caller_phone=str(first_present(obj, "caller_number", default=UNKNOWN_CALLER)),
            call_time=normalize_timestamp(first_present(obj, "date_time")),
            duration=_as_int(first_present(obj, "duration", default=0)),
            download_url=str(first_present(obj, "download_url", default="")),
            transcript=str(first_present(obj, *VOICEMAIL_TRANSCRIPT_FIELDS, default="")),
        )


class CallLogPayload(BaseModel):
    """callee_call_log_completed: the first entry of payload.object.call_logs."""

    log_id: str = ""
    call_id: str = ""
    caller_name: str = UNKNOWN_CALLER
    caller_phone: str = UNKNOWN_CALLER
    call_time: str = ""
    duration: int = 0
    result: str = ""
    has_recording: bool = False

    @classmethod
    def from_event(cls, event: ZoomWebhookEvent) -> "CallLogPayload":
        log = _first_item(event.payload_object(), "call_logs")
        return cls(
            log_id=str(first_present(log, "id", default="")),
            call_id=str(first_present(log, "call_id", default="")),
            caller_name=str(first_present(log, *CALLER_NAME_FIELDS, default=UNKNOWN_CALLER)),
            caller_phone=str(first_present(log, "caller_number", default=UNKNOWN_CALLER)),
            call_time=normalize_timestamp(first_present(log, "date_time")),
            duration=_as_int(first_present(log, "duration", default=0)),
            result=str(first_present(log, "result", default="")),
            has_recording=bool(first_present(log, "has_recording", default=False)),
        )

    def is_sales_call(self) -> bool:
        return self.result not in NON_SALES_CALL_LOG_RESULTS


class RecordingPayload(BaseModel):
    """recording_completed / recording_transcript_completed: first of payload.object.recordings."""

    recording_id: str = ""
    call_id: str = ""
    caller_name: str = UNKNOWN_CALLER
    caller_phone: str = UNKNOWN_CALLER
    call_time: str = ""
    duration: int = 0
    download_url: str = ""
    transcript_download_url: str = ""

    @classmethod
    def from_event(cls, event: ZoomWebhookEvent) -> "RecordingPayload":
        recording = _first_item(event.payload_object(), "recordings")
        return cls(
            recording_id=str(first_present(recording, "id", default="")),
            call_id=str(first_present(recording, "call_id", default="")),
            caller_name=str(first_present(recording, *CALLER_NAME_FIELDS, default=UNKNOWN_CALLER)),
            caller_phone=str(first_present(recording, "caller_number", default=UNKNOWN_CALLER)),
            call_time=normalize_timestamp(first_present(recording, "date_time")),
            duration=_as_int(first_present(recording, "duration", default=0)),
            download_url=str(first_present(recording, "download_url", default="")),
            transcript_download_url=str(
                first_present(recording, "transcript_download_url", default="")
            ),
        )


class AiSummaryPayload(BaseModel):
    """ai_call_summary_changed: only the call id is needed, the summary is fetched."""

    call_id: str = ""

    @classmethod
    def from_event(cls, event: ZoomWebhookEvent) -> "AiSummaryPayload":
        return cls(call_id=str(first_present(event.payload_object(), "call_id", default="")))
