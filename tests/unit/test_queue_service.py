import pytest

from app.jobs.backoff import BackoffPolicy
from app.jobs.memory_queue import InMemoryJobQueue
from app.jobs.queue import JobType, QueueOptions
from app.services.event_classifier import classify_event
from app.services.queue_service import QUEUE_NAMES, QueueService, default_queue_options


@pytest.fixture
def queue_service(test_settings):
    return QueueService(test_settings)


def test_one_memory_queue_per_category(queue_service):
    assert set(queue_service.queues) == set(JobType)
    for job_type, queue in queue_service.queues.items():
        assert isinstance(queue, InMemoryJobQueue)
        assert queue.name == QUEUE_NAMES[job_type]


def test_default_options_follow_settings(test_settings):
    test_settings.QUEUE_ATTEMPTS = 5
    test_settings.QUEUE_BACKOFF_DELAY_SECONDS = 2.0

    options = default_queue_options(test_settings)

    assert options.attempts == 5
    assert options.backoff.type == "exponential"
    assert options.backoff.delay == 2.0


@pytest.mark.asyncio
async def test_enqueue_routes_by_category(queue_service, make_event, voicemail_object):
    classified = classify_event(make_event("phone.voicemail_received", voicemail_object))

    job = await queue_service.enqueue(classified)

    assert job.queue_name == "voicemails"
    stats = await queue_service.get_queue_stats()
    assert stats["voicemails"]["waiting"] == 1
    assert stats["missedCalls"]["waiting"] == 0


@pytest.mark.asyncio
async def test_per_add_options_override_defaults(queue_service, make_queue_job):
    custom = QueueOptions(attempts=1, backoff=BackoffPolicy.none())

    overridden = await queue_service.add_voicemail(make_queue_job(), custom)
    defaulted = await queue_service.add_voicemail(make_queue_job())

    assert overridden.options.attempts == 1
    assert overridden.options.backoff.type == "none"
    assert defaulted.options == queue_service.options


@pytest.mark.asyncio
async def test_queue_stats_shape(queue_service, make_queue_job):
    await queue_service.add_missed_call(make_queue_job())
    await queue_service.add_sales_call(
        make_queue_job(JobType.SALES_CALL, "phone.recording_completed", {"call_id": "C7"})
    )

    stats = await queue_service.get_queue_stats()

    assert set(stats) == {"missedCalls", "voicemails", "salesCalls"}
    assert set(stats["salesCalls"]) == {"waiting", "active", "completed", "failed", "delayed"}
    assert stats["missedCalls"]["waiting"] == 1
    assert stats["salesCalls"]["waiting"] == 1


@pytest.mark.asyncio
async def test_start_processors_registers_each_handler(queue_service, make_queue_job):
    handled = []

    class RecordingProcessor:
        async def process_missed_call(self, job):
            handled.append(("missed", job.id))

        async def process_voicemail(self, job):
            handled.append(("voicemail", job.id))

        async def process_sales_call(self, job):
            handled.append(("sales", job.id))

    queue_service.start_processors(RecordingProcessor())
    missed = await queue_service.add_missed_call(make_queue_job())
    for queue in queue_service.queues.values():
        await queue.wait_until_idle()

    assert handled == [("missed", missed.id)]
    assert all(queue.has_handler for queue in queue_service.queues.values())
    await queue_service.close()
