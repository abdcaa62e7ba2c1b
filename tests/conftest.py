import time
from datetime import UTC, datetime

import pytest

from app.config import Settings
from app.jobs.queue import JobType, QueueJob
from app.models.domain.sales_domain import COL_CALL_ID, SoftFailResult, TaskDetails
from app.models.domain.zoom_domain import ZoomWebhookEvent
from app.services.graph.errors import GraphAPIError, UpsertConflictError


class FakeRedis:
    """In-process stand-in for FastRedisClient covering the queue operations."""

    def __init__(self, available: bool = True):
        self.available = available
        self.store: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.failing_gets = 0

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        if not self.available:
            return False
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def get_or_raise(self, key: str) -> str | None:
        if self.failing_gets:
            self.failing_gets -= 1
            raise ConnectionError("Redis connection reset")
        return self.store.get(key)

    async def incr(self, key: str) -> int | None:
        value = int(self.store.get(key, "0")) + 1
        self.store[key] = str(value)
        return value

    async def push_to_list(self, key: str, value: str, left: bool = True) -> bool:
        if not self.available:
            return False
        items = self.lists.setdefault(key, [])
        if left:
            items.insert(0, value)
        else:
            items.append(value)
        return True

    async def pop_to_inflight(self, source_key: str, inflight_key: str, timeout: int = 0):
        source = self.lists.get(source_key)
        if not source:
            return None
        value = source.pop()
        self.lists.setdefault(inflight_key, []).insert(0, value)
        return value

    async def ack_from_inflight(self, inflight_key: str, value: str) -> bool:
        items = self.lists.get(inflight_key, [])
        if value in items:
            items.remove(value)
            return True
        return False

    async def list_length(self, key: str) -> int:
        return len(self.lists.get(key, []))

    async def schedule(self, key: str, value: str, ready_at: float) -> bool:
        self.zsets.setdefault(key, {})[value] = ready_at
        return True

    async def promote_due(self, schedule_key: str, destination_key: str, now: float | None = None):
        now = time.time() if now is None else now
        scheduled = self.zsets.get(schedule_key, {})
        due = [value for value, score in scheduled.items() if score <= now]
        for value in due:
            del scheduled[value]
            await self.push_to_list(destination_key, value)
        return len(due)

    async def sorted_set_size(self, key: str) -> int:
        return len(self.zsets.get(key, {}))


class FakeRecordStore:
    """In-memory SharePoint lists and Planner tasks with etag semantics."""

    def __init__(self):
        self.lists: dict[str, dict[str, dict]] = {}
        self.tasks: dict[str, dict] = {}
        self.patches: list[tuple[str, str, dict]] = []
        self.notifications: list[tuple[str, str]] = []
        self.pending_conflicts = 0
        self.detail_patch_attempts = 0
        self.fail_link_patch = False
        self.fail_creates = 0
        self.notification_result: SoftFailResult | None = None
        self._ids = 0

    def _next_id(self, prefix: str) -> str:
        self._ids += 1
        return f"{prefix}-{self._ids}"

    def items(self, list_id: str) -> list[dict]:
        return list(self.lists.get(list_id, {}).values())

    async def find_list_item_by_call_id(self, list_id: str, call_id: str) -> dict | None:
        for item_id, fields in self.lists.get(list_id, {}).items():
            if fields.get(COL_CALL_ID) == call_id:
                return {"id": item_id, "fields": dict(fields)}
        return None

    async def create_list_item(self, list_id: str, fields: dict) -> dict:
        if self.fail_creates:
            self.fail_creates -= 1
            raise GraphAPIError("Service unavailable", status_code=503)
        item_id = self._next_id("item")
        self.lists.setdefault(list_id, {})[item_id] = dict(fields)
        return {"id": item_id, "fields": dict(fields)}

    async def patch_list_item_fields(self, list_id: str, item_id: str, fields: dict) -> dict:
        if self.fail_link_patch and "PlannerTaskId" in fields:
            raise GraphAPIError("Item locked", status_code=423)
        self.patches.append((list_id, item_id, dict(fields)))
        self.lists[list_id][item_id].update(fields)
        return dict(self.lists[list_id][item_id])

    async def create_planner_task(self, title: str, due_date=None) -> str:
        task_id = self._next_id("task")
        self.tasks[task_id] = {
            "title": title, "due_date": due_date, "description": "", "version": 1
        }
        return task_id

    async def get_planner_task_details(self, task_id: str) -> TaskDetails:
        task = self.tasks[task_id]
        return TaskDetails(
            task_id=task_id, description=task["description"], etag=f'W/"{task["version"]}"'
        )

    async def patch_planner_task_details(self, task_id: str, description: str, etag: str) -> None:
        self.detail_patch_attempts += 1
        task = self.tasks[task_id]
        if self.pending_conflicts:
            self.pending_conflicts -= 1
            task["version"] += 1
            raise UpsertConflictError("etag mismatch", task_id=task_id, status_code=412)
        if etag != f'W/"{task["version"]}"':
            raise UpsertConflictError("etag mismatch", task_id=task_id, status_code=412)
        task["description"] = description
        task["version"] += 1

    async def post_notification(self, message: str, title: str = "") -> SoftFailResult:
        self.notifications.append((title, message))
        return self.notification_result or SoftFailResult.success("post_notification")


class FakeZoom:
    def __init__(self):
        self.call_details: dict[str, dict] = {}
        self.recordings: dict[str, dict] = {}
        self.files: dict[str, str] = {}
        self.summaries: dict[str, str] = {}

    async def get_call_details(self, call_id: str) -> dict:
        return self.call_details[call_id]

    async def get_recording(self, call_id: str) -> dict:
        return self.recordings.get(call_id, {"url": "", "transcript": None})

    async def download_file(self, url: str) -> str:
        return self.files.get(url, "")

    async def get_call_summary(self, call_id: str) -> str:
        return self.summaries.get(call_id, "")


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def record_store():
    return FakeRecordStore()


@pytest.fixture
def fake_zoom():
    return FakeZoom()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        SHAREPOINT_SITE_ID="site-1",
        SALES_LEADS_LIST_ID="leads",
        SALES_CALLS_LIST_ID="calls",
        PLANNER_PLAN_ID="plan-1",
        TENANT_ID="tenant-1",
        APPLICATION_ID="app-1",
        CLIENT_SECRET_VALUE="secret-1",
        ZOOM_ACCOUNT_ID="acct-1",
        ZOOM_CLIENT_ID="zoom-client",
        ZOOM_CLIENT_SECRET="zoom-secret",
        ZOOM_WEBHOOK_SECRET_TOKEN="webhook-secret",
        QUEUE_BACKOFF_DELAY_SECONDS=0.0,
    )


@pytest.fixture
def fixed_now():
    return datetime(2026, 3, 1, 10, 0, tzinfo=UTC)


@pytest.fixture
def recorded_sleeps():
    """Replacement for asyncio.sleep that records delays without waiting."""
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    _sleep.delays = delays
    return _sleep


@pytest.fixture
def make_event():
    def _make(event_type: str, obj: dict | None = None) -> ZoomWebhookEvent:
        return ZoomWebhookEvent(
            event=event_type,
            event_ts=1772359200000,
            payload={"account_id": "acct-1", "object": obj or {}},
        )

    return _make


@pytest.fixture
def make_queue_job(make_event):
    def _make(
        job_type: JobType = JobType.MISSED_CALL, event_type: str = "phone.callee_missed", obj=None
    ):
        return QueueJob(type=job_type, event=make_event(event_type, obj))

    return _make


@pytest.fixture
def missed_call_object():
    return {
        "call_id": "C1",
        "caller": {"name": "Jane Doe", "phone_number": "+15550100"},
        "date_time": "2026-03-01T09:55:00Z",
        "duration": 0,
        "handup_result": "No Answer",
    }


@pytest.fixture
def voicemail_object():
    return {
        "id": "VM1",
        "call_id": "C1",
        "caller_name": "Jane Doe",
        "caller_number": "+15550100",
        "date_time": "2026-03-01T09:56:00Z",
        "duration": 42,
        "download_url": "https://zoom.us/v2/phone/voice_mails/VM1/download",
        "transcription": {"content": "Hi, please call me back about pricing."},
    }
