"""
Microsoft Graph client for the SharePoint lists, Planner tasks and Teams
notifications the relay writes to.
Low-level Graph API client: app-only auth, one method per store operation.
"""

import asyncio
import re
import time
from datetime import datetime

import httpx

from app.config import Settings, settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.sales_domain import COL_CALL_ID, SoftFailResult, TaskDetails
from app.services.graph.errors import GraphAPIError, UpsertConflictError
from app.services.token_cache import AccessToken, AccessTokenCache, TokenAcquisitionError

logger = get_logger(__name__)

# Graph API configuration
GRAPH_API_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
AZURE_TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 30  # seconds
TOKEN_TIMEOUT = 10  # seconds
TOKEN_REFRESH_BUFFER_SECONDS = 120
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
CONFLICT_STATUS_CODES = {409, 412}
IDEMPOTENT_METHODS = {"GET", "PATCH", "PUT", "DELETE"}
# errors raised before the request reached Graph, safe to resend for any method
UNSENT_REQUEST_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)

NON_INDEXED_QUERY_PREFER = "HonorNonIndexedQueriesWarningMayFailRandomly"
NOTIFICATION_TITLE = "New Zoom Voicemail"


def _odata_quote(value: str) -> str:
    """Escape a literal for an OData $filter string."""
    return value.replace("'", "''")


def _can_resend(method: str, error: httpx.RequestError) -> bool:
    """A POST that may have reached Graph is not resent, so a create never runs twice."""
    return method.upper() in IDEMPOTENT_METHODS or isinstance(error, UNSENT_REQUEST_ERRORS)


def html_to_text(message: str) -> str:
    """Flatten the HTML notification body into card text."""
    text = re.sub(r"<br\s*/?>", "\n", message, flags=re.IGNORECASE)
    text = re.sub(r"</p>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]*>", "", text)
    return text.strip()


class GraphService:
    """
    Service for the Microsoft Graph operations the relay depends on.

    Exposes find/create/patch on SharePoint list items, Planner task create
    plus conditional detail patching, and Teams webhook notifications.
    """

    def __init__(self, app_settings: Settings | None = None):
        self.settings = app_settings or settings
        self._client = self._create_client()
        self.token_cache = AccessTokenCache(
            self._fetch_access_token,
            refresh_buffer_seconds=TOKEN_REFRESH_BUFFER_SECONDS,
            provider="microsoft_graph",
        )

    def _create_client(self) -> httpx.AsyncClient:
        """Create async HTTP client for Graph API."""
        timeout = httpx.Timeout(REQUEST_TIMEOUT)
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
        return httpx.AsyncClient(timeout=timeout, limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    @property
    def site_id(self) -> str:
        return self.settings.SHAREPOINT_SITE_ID or ""

    def _list_items_url(self, list_id: str) -> str:
        return f"{GRAPH_API_BASE_URL}/sites/{self.site_id}/lists/{list_id}/items"

    async def _fetch_access_token(self) -> AccessToken:
        """Client-credentials grant against Azure AD."""
        url = AZURE_TOKEN_URL.format(tenant_id=self.settings.TENANT_ID)
        data = {
            "client_id": self.settings.APPLICATION_ID,
            "client_secret": self.settings.CLIENT_SECRET_VALUE,
            "scope": GRAPH_SCOPE,
            "grant_type": "client_credentials",
        }

        try:
            response = await self._client.post(url, data=data, timeout=TOKEN_TIMEOUT)
        except httpx.RequestError as e:
            logger.error("Graph token request failed", error=str(e))
            raise TokenAcquisitionError(
                f"Graph token request failed: {e}", provider="microsoft_graph"
            ) from e

        if not response.is_success:
            logger.error(
                "Graph token request rejected",
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise TokenAcquisitionError(
                f"Graph token request failed (HTTP {response.status_code})",
                provider="microsoft_graph",
                status_code=response.status_code,
            )

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            raise TokenAcquisitionError(
                "Token endpoint response missing access_token", provider="microsoft_graph"
            )

        expires_in = int(payload.get("expires_in") or 3600)
        return AccessToken(token=access_token, expires_at=time.time() + expires_in)

    async def _auth_headers(self, extra: dict | None = None) -> dict:
        token = await self.token_cache.get_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with retry and backoff on throttling / 5xx."""
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                    logger.debug(
                        "Graph API retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                if response.status_code == 401:
                    self.token_cache.invalidate()
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES or not _can_resend(method, e):
                    raise
                backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                logger.debug(
                    "Graph API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError("Graph API retry loop exhausted")

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Handle and validate Graph API response.

        Raises:
            GraphAPIError: If response contains errors
        """
        logger.debug(
            f"Graph API {operation} response",
            status_code=response.status_code,
            response_size=len(response.text) if response.text else 0,
        )

        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse Graph API {operation} response", error=str(e))
                raise GraphAPIError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            logger.error(
                f"Graph API {operation} failed with non-JSON response",
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise GraphAPIError(
                f"Graph API error (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from None

        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        error_code = error_info.get("code", "unknown")
        error_message = error_info.get("message", "Unknown Graph API error")

        logger.error(
            f"Graph API {operation} failed",
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
        )
        raise GraphAPIError(
            f"Graph {operation} failed: {error_message}",
            error_code=str(error_code),
            status_code=response.status_code,
            response_data=error_data,
        )

    # ------------------------------------------------------------------
    # SharePoint list items
    # ------------------------------------------------------------------

    async def find_list_item_by_call_id(self, list_id: str, call_id: str) -> dict | None:
        """
        Find the list item whose CallId column equals call_id.

        Returns:
            dict | None: First matching item ({"id", "fields"}), None if absent.
            Uniqueness is assumed; extra matches are ignored.
        """
        params = {
            "$filter": f"fields/{COL_CALL_ID} eq '{_odata_quote(call_id)}'",
            "$expand": "fields",
        }
        headers = await self._auth_headers({"Prefer": NON_INDEXED_QUERY_PREFER})

        response = await self._request_with_retry(
            "GET", self._list_items_url(list_id), headers=headers, params=params
        )
        data = self._handle_api_response(response, "find_list_item")

        items = data.get("value") or []
        if len(items) > 1:
            logger.warning(
                "Multiple list items share a CallId, using the first",
                list_id=list_id,
                call_id=call_id,
                matches=len(items),
            )
        return items[0] if items else None

    async def create_list_item(self, list_id: str, fields: dict) -> dict:
        """Create a list item and return the created resource."""
        headers = await self._auth_headers()
        response = await self._request_with_retry(
            "POST", self._list_items_url(list_id), headers=headers, json={"fields": fields}
        )
        data = self._handle_api_response(response, "create_list_item")
        logger.info("Created list item", list_id=list_id, item_id=data.get("id"))
        return data

    async def patch_list_item_fields(self, list_id: str, item_id: str, fields: dict) -> dict:
        """Patch only the given columns of an existing list item."""
        headers = await self._auth_headers()
        url = f"{self._list_items_url(list_id)}/{item_id}/fields"
        response = await self._request_with_retry("PATCH", url, headers=headers, json=fields)
        data = self._handle_api_response(response, "patch_list_item_fields")
        logger.info(
            "Patched list item fields", list_id=list_id, item_id=item_id, columns=sorted(fields)
        )
        return data

    # ------------------------------------------------------------------
    # Planner tasks
    # ------------------------------------------------------------------

    async def create_planner_task(self, title: str, due_date: datetime | None = None) -> str:
        """Create a Planner task in the configured plan and return its id."""
        task = {"planId": self.settings.PLANNER_PLAN_ID, "title": title}
        if due_date:
            task["dueDateTime"] = due_date.isoformat()

        headers = await self._auth_headers()
        response = await self._request_with_retry(
            "POST", f"{GRAPH_API_BASE_URL}/planner/tasks", headers=headers, json=task
        )
        data = self._handle_api_response(response, "create_planner_task")
        logger.info("Created Planner task", task_id=data.get("id"))
        return data["id"]

    async def get_planner_task_details(self, task_id: str) -> TaskDetails:
        """Read task details together with the etag needed to patch them."""
        headers = await self._auth_headers()
        response = await self._request_with_retry(
            "GET", f"{GRAPH_API_BASE_URL}/planner/tasks/{task_id}/details", headers=headers
        )
        data = self._handle_api_response(response, "get_planner_task_details")
        return TaskDetails(
            task_id=task_id,
            description=data.get("description") or "",
            etag=data.get("@odata.etag") or "",
        )

    async def patch_planner_task_details(self, task_id: str, description: str, etag: str) -> None:
        """
        Replace the task description if the details still carry etag.

        Raises:
            UpsertConflictError: The details changed since they were read.
            GraphAPIError: Any other failure.
        """
        headers = await self._auth_headers(
            {"If-Match": etag, "Prefer": "return=representation"}
        )
        response = await self._request_with_retry(
            "PATCH",
            f"{GRAPH_API_BASE_URL}/planner/tasks/{task_id}/details",
            headers=headers,
            json={"description": description},
        )

        if response.status_code in CONFLICT_STATUS_CODES:
            logger.warning(
                "Planner details version conflict",
                task_id=task_id,
                status_code=response.status_code,
            )
            raise UpsertConflictError(
                f"Planner task {task_id} details were modified concurrently",
                task_id=task_id,
                status_code=response.status_code,
            )

        self._handle_api_response(response, "patch_planner_task_details")
        logger.info("Updated Planner task details", task_id=task_id)

    # ------------------------------------------------------------------
    # Teams notifications
    # ------------------------------------------------------------------

    async def post_notification(
        self, message: str, title: str = NOTIFICATION_TITLE
    ) -> SoftFailResult:
        """
        Post an Adaptive Card to the Teams incoming webhook.

        Never raises: the outcome is returned for the caller to log.
        """
        operation = "post_notification"
        webhook_url = self.settings.TEAMS_WEBHOOK_URL
        if not webhook_url:
            logger.warning("No TEAMS_WEBHOOK_URL configured, skipping Teams notification")
            return SoftFailResult.skip(operation)

        payload = {
            "type": "message",
            "attachments": [
                {
                    "contentType": "application/vnd.microsoft.card.adaptive",
                    "content": {
                        "type": "AdaptiveCard",
                        "body": [
                            {
                                "type": "TextBlock",
                                "text": title,
                                "weight": "Bolder",
                                "size": "Medium",
                            },
                            {"type": "TextBlock", "text": html_to_text(message), "wrap": True},
                            {
                                "type": "TextBlock",
                                "text": "Please check Planner for details.",
                                "isSubtle": True,
                                "wrap": True,
                            },
                        ],
                        "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
                        "version": "1.2",
                    },
                }
            ],
        }

        try:
            response = await self._client.post(webhook_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Error posting to Teams webhook", error=str(e))
            return SoftFailResult.failure(operation, e)

        logger.info("Posted Teams notification", status_code=response.status_code)
        return SoftFailResult.success(operation)

    async def test_connection(self) -> bool:
        """Check that the configured SharePoint site is reachable."""
        try:
            headers = await self._auth_headers()
            response = await self._request_with_retry(
                "GET", f"{GRAPH_API_BASE_URL}/sites/{self.site_id}", headers=headers
            )
            site = self._handle_api_response(response, "test_connection")
            logger.info("Graph API connection successful", site=site.get("displayName"))
            return True
        except (GraphAPIError, TokenAcquisitionError, httpx.HTTPError) as e:
            logger.error("Graph API connection failed", error=str(e))
            return False
