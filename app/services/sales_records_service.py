"""
Idempotent upserts of sales records keyed by Zoom call id.

Every Zoom event about a call lands on the same SharePoint item: the first
event creates it, later events only patch the columns they are allowed to
change. Leads additionally own one Planner follow-up task whose description
grows as new details (voicemail, transcript) arrive.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from app.config import Settings, settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.sales_domain import (
    COL_PLANNER_TASK_ID,
    FollowupTask,
    SalesCallRecord,
    SalesLeadRecord,
    SoftFailResult,
    TaskDetails,
    UpsertResult,
)
from app.services.graph.errors import LinkBackError, UpsertConflictError

logger = get_logger(__name__)

FOLLOWUP_SEPARATOR = "\n\n-------------------\n\n"
FOLLOWUP_PATCH_ATTEMPTS = 3
FOLLOWUP_RETRY_DELAY_SECONDS = 1.5


class SalesRecordStore(Protocol):
    """Operations the upsert logic needs from the record store (GraphService)."""

    async def find_list_item_by_call_id(self, list_id: str, call_id: str) -> dict | None: ...

    async def create_list_item(self, list_id: str, fields: dict) -> dict: ...

    async def patch_list_item_fields(self, list_id: str, item_id: str, fields: dict) -> dict: ...

    async def create_planner_task(self, title: str, due_date: Any = None) -> str: ...

    async def get_planner_task_details(self, task_id: str) -> TaskDetails: ...

    async def patch_planner_task_details(
        self, task_id: str, description: str, etag: str
    ) -> None: ...

    async def post_notification(self, message: str, title: str = ...) -> SoftFailResult: ...


class SalesRecordsService:
    """Create-or-update logic for Sales Leads, Sales Calls and follow-up tasks."""

    def __init__(
        self,
        store: SalesRecordStore,
        app_settings: Settings | None = None,
        conflict_retry_delay: float = FOLLOWUP_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        app_settings = app_settings or settings
        self.store = store
        self.leads_list_id = app_settings.SALES_LEADS_LIST_ID or ""
        self.calls_list_id = app_settings.SALES_CALLS_LIST_ID or ""
        self.conflict_retry_delay = conflict_retry_delay
        self._sleep = sleep

    async def upsert_sales_lead(self, record: SalesLeadRecord) -> UpsertResult:
        """
        Find the lead for record.call_id and patch it, or create it.

        Returns:
            UpsertResult: item id plus the follow-up task id already linked
            to an existing lead (None for a new lead)
        """
        existing = await self._find(self.leads_list_id, record.call_id)

        if existing:
            item_id = str(existing["id"])
            linked_task_id = (existing.get("fields") or {}).get(COL_PLANNER_TASK_ID) or None
            logger.info(
                "Found existing sales lead",
                item_id=item_id,
                call_id=record.call_id,
                linked_task_id=linked_task_id,
            )

            patch = record.mutable_patch()
            if patch:
                await self.store.patch_list_item_fields(self.leads_list_id, item_id, patch)
            return UpsertResult(id=item_id, linked_followup_id=linked_task_id, created=False)

        created = await self.store.create_list_item(self.leads_list_id, record.to_list_fields())
        logger.info("Created sales lead", item_id=created.get("id"), call_id=record.call_id)
        return UpsertResult(
            id=str(created["id"]), linked_followup_id=record.linked_followup_id, created=True
        )

    async def upsert_sales_call(self, record: SalesCallRecord) -> UpsertResult:
        """Find the call item for record.call_id and fill in new details, or create it."""
        existing = await self._find(self.calls_list_id, record.call_id)

        if existing:
            item_id = str(existing["id"])
            patch = record.mutable_patch()
            logger.info(
                "Found existing sales call",
                item_id=item_id,
                call_id=record.call_id,
                columns=sorted(patch),
            )
            if patch:
                await self.store.patch_list_item_fields(self.calls_list_id, item_id, patch)
            return UpsertResult(id=item_id, created=False)

        created = await self.store.create_list_item(self.calls_list_id, record.to_list_fields())
        logger.info("Created sales call", item_id=created.get("id"), call_id=record.call_id)
        return UpsertResult(id=str(created["id"]), created=True)

    async def upsert_followup_task(
        self, task: FollowupTask, existing_task_id: str | None = None
    ) -> str:
        """
        Create the follow-up task, or append task.description to an existing one.

        Raises:
            UpsertConflictError: details kept changing for every attempt
        """
        if existing_task_id:
            task_id = existing_task_id
            logger.info("Using existing Planner task", task_id=task_id)
        else:
            task_id = await self.store.create_planner_task(task.title, task.due_date)

        if task.description:
            await self._write_task_details(task_id, task.description, append=bool(existing_task_id))
        return task_id

    async def _write_task_details(self, task_id: str, details: str, append: bool) -> None:
        """Read-modify-patch the task description, conditioned on the details etag."""
        for attempt in range(1, FOLLOWUP_PATCH_ATTEMPTS + 1):
            current = await self.store.get_planner_task_details(task_id)

            description = details
            if append and current.description:
                description = current.description + FOLLOWUP_SEPARATOR + details

            try:
                await self.store.patch_planner_task_details(task_id, description, current.etag)
                return
            except UpsertConflictError as e:
                if attempt == FOLLOWUP_PATCH_ATTEMPTS:
                    logger.error(
                        "Planner details conflict, giving up",
                        task_id=task_id,
                        attempts=attempt,
                    )
                    raise
                logger.warning(
                    "Planner details conflict, retrying",
                    task_id=task_id,
                    attempt=attempt,
                    delay_seconds=self.conflict_retry_delay,
                    error=str(e),
                )
                await self._sleep(self.conflict_retry_delay)

    async def link_followup_task(self, item_id: str, task_id: str) -> SoftFailResult:
        """Store the task id on the lead. Failure is reported, never raised."""
        operation = "link_followup_task"
        try:
            await self.store.patch_list_item_fields(
                self.leads_list_id, item_id, {COL_PLANNER_TASK_ID: task_id}
            )
        except Exception as e:
            error = LinkBackError(
                f"Could not link task {task_id} to lead {item_id}: {e}", item_id, task_id
            )
            logger.error(
                "Error linking Planner task to sales lead",
                item_id=item_id,
                task_id=task_id,
                error=str(e),
            )
            return SoftFailResult.failure(operation, error)

        logger.info("Linked Planner task to sales lead", item_id=item_id, task_id=task_id)
        return SoftFailResult.success(operation)

    async def record_lead_with_followup(
        self, record: SalesLeadRecord, task: FollowupTask
    ) -> UpsertResult:
        """
        Upsert the lead and its follow-up task, linking a newly created task back.

        The link-back is best effort: a lead without a link is still valid.
        """
        lead = await self.upsert_sales_lead(record)
        task_id = await self.upsert_followup_task(task, existing_task_id=lead.linked_followup_id)

        if not lead.linked_followup_id and task_id:
            link = await self.link_followup_task(lead.id, task_id)
            if not link.ok:
                logger.warning("Lead left without follow-up link", item_id=lead.id, task_id=task_id)

        return UpsertResult(id=lead.id, linked_followup_id=task_id, created=lead.created)

    async def _find(self, list_id: str, call_id: str) -> dict | None:
        if not call_id:
            return None
        return await self.store.find_list_item_by_call_id(list_id, call_id)
