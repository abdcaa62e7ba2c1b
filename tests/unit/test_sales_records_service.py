"""
Tests for the idempotent lead/call upserts and the follow-up task handling.
"""

import pytest

from app.jobs.errors import HandlerError
from app.models.domain.sales_domain import (
    COL_CALL_ID,
    COL_PLANNER_TASK_ID,
    COL_RECORDING_URL,
    COL_STATUS,
    COL_VOICEMAIL_TRANSCRIPT,
    FollowupTask,
    SalesCallRecord,
    SalesLeadRecord,
)
from app.services.graph.errors import LinkBackError, UpsertConflictError
from app.services.sales_records_service import FOLLOWUP_SEPARATOR, SalesRecordsService


@pytest.fixture
def service(record_store, test_settings, recorded_sleeps):
    return SalesRecordsService(record_store, app_settings=test_settings, sleep=recorded_sleeps)


def _lead(call_id="C1", transcript=None):
    return SalesLeadRecord(
        summary="Missed call from Jane Doe",
        call_timestamp="2026-03-01T09:55:00Z",
        call_id=call_id,
        transcript=transcript,
    )


def _call(call_id="C7", status="Completed", **kwargs):
    return SalesCallRecord(
        contact="Acme Buyer (+15550123)",
        summary="Acme Buyer",
        status=status,
        call_timestamp="2026-03-01T09:00:00Z",
        call_id=call_id,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_new_lead_gets_task_and_link(service, record_store):
    result = await service.record_lead_with_followup(
        _lead(),
        FollowupTask(title="Follow up: Missed call from Jane Doe", description="Call ID: C1"),
    )

    assert result.created is True
    leads = record_store.items("leads")
    assert len(leads) == 1
    assert leads[0][COL_CALL_ID] == "C1"
    assert leads[0][COL_PLANNER_TASK_ID] == result.linked_followup_id
    assert record_store.tasks[result.linked_followup_id]["description"] == "Call ID: C1"


@pytest.mark.asyncio
async def test_second_event_for_same_call_appends_to_existing_task(service, record_store):
    first = await service.record_lead_with_followup(
        _lead(), FollowupTask(title="Follow up: Missed call", description="Missed call details")
    )
    second = await service.record_lead_with_followup(
        _lead(transcript="Call me back"),
        FollowupTask(title="Follow up: Voicemail", description="Voicemail details"),
    )

    assert second.id == first.id
    assert second.created is False
    assert second.linked_followup_id == first.linked_followup_id
    assert len(record_store.items("leads")) == 1
    assert len(record_store.tasks) == 1

    description = record_store.tasks[first.linked_followup_id]["description"]
    assert description == "Missed call details" + FOLLOWUP_SEPARATOR + "Voicemail details"
    assert record_store.items("leads")[0][COL_VOICEMAIL_TRANSCRIPT] == "Call me back"


@pytest.mark.asyncio
async def test_existing_lead_without_transcript_is_not_patched(service, record_store):
    await service.upsert_sales_lead(_lead())
    record_store.patches.clear()

    result = await service.upsert_sales_lead(_lead())

    assert result.created is False
    assert record_store.patches == []


@pytest.mark.asyncio
async def test_sales_call_events_merge_into_one_item(service, record_store):
    created = await service.upsert_sales_call(_call())
    updated = await service.upsert_sales_call(
        _call(status="Recorded", recording_link="https://zoom.us/rec/R1")
    )
    repeated = await service.upsert_sales_call(_call())

    assert created.created is True
    assert updated.id == created.id
    assert repeated.id == created.id

    items = record_store.items("calls")
    assert len(items) == 1
    assert items[0][COL_RECORDING_URL] == "https://zoom.us/rec/R1"
    assert items[0][COL_STATUS] == "Completed"


@pytest.mark.asyncio
async def test_empty_values_never_overwrite_stored_ones(service, record_store):
    await service.upsert_sales_call(_call(recording_link="https://zoom.us/rec/R1"))
    await service.upsert_sales_call(_call(status="Transcript Available", transcript="hello"))

    item = record_store.items("calls")[0]
    assert item[COL_RECORDING_URL] == "https://zoom.us/rec/R1"
    assert item["TranscriptUrl"] == "hello"


@pytest.mark.asyncio
async def test_empty_call_id_always_creates(service, record_store):
    await service.upsert_sales_call(_call(call_id=""))
    await service.upsert_sales_call(_call(call_id=""))

    assert len(record_store.items("calls")) == 2


@pytest.mark.asyncio
async def test_conflicts_retried_then_description_written(service, record_store, recorded_sleeps):
    task_id = await service.upsert_followup_task(FollowupTask(title="Follow up"))
    record_store.tasks[task_id]["description"] = "first"
    record_store.pending_conflicts = 2

    await service.upsert_followup_task(
        FollowupTask(title="Follow up", description="second"), existing_task_id=task_id
    )

    assert record_store.detail_patch_attempts == 3
    assert recorded_sleeps.delays == [1.5, 1.5]
    assert record_store.tasks[task_id]["description"] == "first" + FOLLOWUP_SEPARATOR + "second"


@pytest.mark.asyncio
async def test_conflict_raised_after_three_attempts(service, record_store, recorded_sleeps):
    task_id = await service.upsert_followup_task(FollowupTask(title="Follow up"))
    record_store.pending_conflicts = 3

    with pytest.raises(UpsertConflictError) as exc_info:
        await service.upsert_followup_task(
            FollowupTask(title="Follow up", description="details"), existing_task_id=task_id
        )

    assert isinstance(exc_info.value, HandlerError)
    assert record_store.detail_patch_attempts == 3
    assert len(recorded_sleeps.delays) == 2


@pytest.mark.asyncio
async def test_task_without_description_skips_details(service, record_store):
    task_id = await service.upsert_followup_task(FollowupTask(title="Follow up"))

    assert task_id in record_store.tasks
    assert record_store.detail_patch_attempts == 0


@pytest.mark.asyncio
async def test_link_back_failure_is_soft(service, record_store):
    record_store.fail_link_patch = True

    result = await service.record_lead_with_followup(
        _lead(), FollowupTask(title="Follow up", description="details")
    )

    assert result.linked_followup_id in record_store.tasks
    lead = record_store.items("leads")[0]
    assert COL_PLANNER_TASK_ID not in lead


@pytest.mark.asyncio
async def test_link_followup_task_reports_failure(service, record_store):
    lead = await service.upsert_sales_lead(_lead())
    record_store.fail_link_patch = True

    outcome = await service.link_followup_task(lead.id, "task-99")

    assert outcome.ok is False
    assert isinstance(outcome.error, LinkBackError)
    assert outcome.error.task_id == "task-99"
