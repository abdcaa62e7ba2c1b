"""Errors raised while talking to Microsoft Graph."""

from app.jobs.errors import HandlerError


class GraphAPIError(Exception):
    """Custom exception for Microsoft Graph API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


class UpsertConflictError(HandlerError):
    """
    The Planner task details changed between read and patch (etag mismatch).

    Retried by the follow-up upsert; once its attempts run out it propagates
    as a handler failure and the queue's own retry policy takes over.
    """

    def __init__(self, message: str, task_id: str | None = None, status_code: int | None = None):
        super().__init__(message, recoverable=True)
        self.task_id = task_id
        self.status_code = status_code


class LinkBackError(Exception):
    """Writing the follow-up task id back onto a lead failed. Always soft."""

    def __init__(self, message: str, item_id: str, task_id: str):
        super().__init__(message)
        self.item_id = item_id
        self.task_id = task_id
