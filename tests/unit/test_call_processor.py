"""
Tests for the missed-call, voicemail and sales-call queue handlers.
"""

import json
from datetime import timedelta

import pytest

from app.jobs.queue import Job, JobType, QueueOptions
from app.models.domain.sales_domain import (
    COL_AI_SUMMARY,
    COL_CALL_TIMESTAMP,
    COL_CONTACT,
    COL_PLANNER_TASK_ID,
    COL_PRIORITY,
    COL_RECORDING_URL,
    COL_STATUS,
    COL_TITLE,
    COL_TRANSCRIPT,
    COL_VOICEMAIL_TRANSCRIPT,
    COL_VOICEMAIL_URL,
    SoftFailResult,
)
from app.services.call_processor import CallProcessor, display_time
from app.services.sales_records_service import FOLLOWUP_SEPARATOR, SalesRecordsService


@pytest.fixture
def processor(record_store, fake_zoom, test_settings, recorded_sleeps, fixed_now):
    records = SalesRecordsService(record_store, app_settings=test_settings, sleep=recorded_sleeps)
    return CallProcessor(records, fake_zoom, notifier=record_store, clock=lambda: fixed_now)


@pytest.fixture
def make_job(make_queue_job):
    def _make(job_type: JobType, event_type: str, obj: dict) -> Job:
        return Job(
            id="job-1",
            queue_name=job_type.value,
            data=make_queue_job(job_type, event_type, obj),
            options=QueueOptions(),
        )

    return _make


def test_display_time():
    assert display_time("2026-03-01T09:55:00Z") == "2026-03-01 09:55 UTC"
    assert display_time("yesterday") == "yesterday"


@pytest.mark.asyncio
async def test_missed_call_creates_lead_task_and_notification(
    processor, record_store, make_job, missed_call_object, fixed_now
):
    job = make_job(JobType.MISSED_CALL, "phone.callee_missed", missed_call_object)

    await processor.process_missed_call(job)

    lead = record_store.items("leads")[0]
    assert lead[COL_TITLE] == "Missed call from Jane Doe"
    assert lead[COL_PRIORITY] == "High"
    assert lead[COL_STATUS] == "New"
    assert lead[COL_CALL_TIMESTAMP] == "2026-03-01T09:55:00Z"

    task = record_store.tasks[lead[COL_PLANNER_TASK_ID]]
    assert task["title"] == "Follow up: Missed call from Jane Doe"
    assert task["due_date"] == fixed_now + timedelta(days=1)
    assert "Phone: +15550100" in task["description"]
    assert "Time: 2026-03-01 09:55 UTC" in task["description"]

    title, message = record_store.notifications[0]
    assert title == "New Sales Lead - Missed Call"
    assert "Jane Doe" in message


@pytest.mark.asyncio
async def test_voicemail_with_transcript(processor, record_store, make_job, voicemail_object):
    job = make_job(JobType.VOICEMAIL, "phone.voicemail_received", voicemail_object)

    await processor.process_voicemail(job)

    lead = record_store.items("leads")[0]
    assert lead[COL_TITLE] == "Voicemail from Jane Doe"
    assert lead[COL_VOICEMAIL_URL] == voicemail_object["download_url"]
    assert lead[COL_VOICEMAIL_TRANSCRIPT] == "Hi, please call me back about pricing."

    description = record_store.tasks[lead[COL_PLANNER_TASK_ID]]["description"]
    assert "Transcript:\nHi, please call me back about pricing." in description
    assert description.endswith("Please listen to the voicemail and follow up.")

    assert [title for title, _ in record_store.notifications] == ["New Sales Lead - Voicemail"]


@pytest.mark.asyncio
async def test_voicemail_without_transcript_skips_notification(
    processor, record_store, make_job, voicemail_object
):
    voicemail_object.pop("transcription")
    job = make_job(JobType.VOICEMAIL, "phone.voicemail_received", voicemail_object)

    await processor.process_voicemail(job)

    assert len(record_store.items("leads")) == 1
    assert record_store.notifications == []


@pytest.mark.asyncio
async def test_missed_call_then_voicemail_share_lead_and_task(
    processor, record_store, make_job, missed_call_object, voicemail_object
):
    await processor.process_missed_call(
        make_job(JobType.MISSED_CALL, "phone.callee_missed", missed_call_object)
    )
    await processor.process_voicemail(
        make_job(JobType.VOICEMAIL, "phone.voicemail_transcript_completed", voicemail_object)
    )

    leads = record_store.items("leads")
    assert len(leads) == 1
    assert len(record_store.tasks) == 1
    assert leads[0][COL_VOICEMAIL_TRANSCRIPT] == "Hi, please call me back about pricing."

    description = record_store.tasks[leads[0][COL_PLANNER_TASK_ID]]["description"]
    missed_part, voicemail_part = description.split(FOLLOWUP_SEPARATOR)
    assert missed_part.startswith("Call ID: C1")
    assert voicemail_part.startswith("Voicemail ID: VM1")


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_job(
    processor, record_store, make_job, missed_call_object
):
    record_store.notification_result = SoftFailResult.failure(
        "post_notification", RuntimeError("Teams down")
    )

    await processor.process_missed_call(
        make_job(JobType.MISSED_CALL, "phone.callee_missed", missed_call_object)
    )

    assert len(record_store.items("leads")) == 1


@pytest.mark.asyncio
async def test_call_log_creates_completed_sales_call(processor, record_store, make_job):
    obj = {
        "call_logs": [
            {
                "call_id": "C7",
                "caller_name": "Acme Buyer",
                "caller_number": "+15550123",
                "result": "Call connected",
                "duration": 300,
                "date_time": "2026-03-01T09:00:00Z",
            }
        ]
    }

    await processor.process_sales_call(
        make_job(JobType.SALES_CALL, "phone.callee_call_log_completed", obj)
    )

    call = record_store.items("calls")[0]
    assert call[COL_CONTACT] == "Acme Buyer (+15550123)"
    assert call[COL_TITLE] == "Acme Buyer"
    assert call[COL_STATUS] == "Completed"
    assert call[COL_PRIORITY] == "Medium"
    assert record_store.items("leads") == []


@pytest.mark.asyncio
async def test_recording_then_transcript_update_same_item(
    processor, record_store, fake_zoom, make_job
):
    recording = {
        "id": "R1",
        "call_id": "C7",
        "caller_name": "Acme Buyer",
        "caller_number": "+15550123",
        "download_url": "https://zoom.us/rec/R1",
        "transcript_download_url": "https://zoom.us/rec/R1/transcript",
    }
    fake_zoom.files["https://zoom.us/rec/R1/transcript"] = json.dumps(
        {"timeline": [{"text": "Hello", "users": [{"username": "Acme Buyer"}]}]}
    )
    fake_zoom.summaries["C7"] = "Customer wants a quote."

    await processor.process_sales_call(
        make_job(JobType.SALES_CALL, "phone.recording_completed", {"recordings": [recording]})
    )
    await processor.process_sales_call(
        make_job(
            JobType.SALES_CALL,
            "phone.recording_transcript_completed",
            {"recordings": [recording]},
        )
    )

    calls = record_store.items("calls")
    assert len(calls) == 1
    assert calls[0][COL_RECORDING_URL] == "https://zoom.us/rec/R1"
    assert calls[0][COL_TRANSCRIPT] == "Acme Buyer: Hello"
    assert calls[0][COL_AI_SUMMARY] == "Customer wants a quote."
    assert calls[0][COL_STATUS] == "Transcript Available"


@pytest.mark.asyncio
async def test_ai_summary_patches_existing_call(processor, record_store, fake_zoom, make_job):
    record_store.lists["calls"] = {
        "item-50": {"CallId": "C7", COL_TITLE: "Acme Buyer", COL_STATUS: "Completed"}
    }
    fake_zoom.summaries["C7"] = "Follow up next week."

    await processor.process_sales_call(
        make_job(JobType.SALES_CALL, "phone.ai_call_summary_changed", {"call_id": "C7"})
    )

    item = record_store.lists["calls"]["item-50"]
    assert item[COL_AI_SUMMARY] == "Follow up next week."
    assert item[COL_STATUS] == "Summary Available"
    assert item[COL_TITLE] == "Acme Buyer"


@pytest.mark.asyncio
async def test_ai_summary_without_existing_item_creates_placeholder(
    processor, record_store, make_job
):
    await processor.process_sales_call(
        make_job(JobType.SALES_CALL, "phone.ai_call_summary_changed", {"call_id": "C8"})
    )

    item = record_store.items("calls")[0]
    assert item[COL_CONTACT] == "Pending Lookup"
    assert item[COL_TITLE] == "AI Summary Update"
    assert item[COL_CALL_TIMESTAMP] == "2026-03-01T10:00:00Z"


@pytest.mark.asyncio
async def test_unexpected_event_in_sales_queue_is_skipped(processor, record_store, make_job):
    await processor.process_sales_call(
        make_job(JobType.SALES_CALL, "phone.callee_missed", {"call_id": "C1"})
    )
    assert record_store.items("calls") == []


@pytest.mark.asyncio
async def test_log_call_uses_zoom_details(processor, record_store, fake_zoom):
    fake_zoom.call_details["C9"] = {
        "call_id": "C9",
        "caller_name": "Walk In",
        "caller_number": "+15550999",
        "date_time": "2026-03-01T08:30:00Z",
        "duration": 61,
    }
    fake_zoom.recordings["C9"] = {"url": "https://zoom.us/rec/C9", "transcript": None}

    result = await processor.log_call("C9", summary="Pricing question")

    assert result.created is True
    item = record_store.lists["calls"][result.id]
    assert item[COL_TITLE] == "Pricing question"
    assert item[COL_CONTACT] == "Walk In"
    assert item[COL_PRIORITY] == "Medium"
    assert item[COL_STATUS] == "Completed"
    assert item[COL_RECORDING_URL] == "https://zoom.us/rec/C9"
