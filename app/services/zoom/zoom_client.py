"""
Zoom Phone API client.
Server-to-Server OAuth, call history lookups, recordings and transcripts.
"""

import asyncio
import base64
import json
import time

import httpx

from app.config import Settings, settings
from app.infrastructure.observability.logging import get_logger
from app.services.token_cache import AccessToken, AccessTokenCache, TokenAcquisitionError

logger = get_logger(__name__)

ZOOM_API_BASE_URL = "https://api.zoom.us/v2"
ZOOM_TOKEN_URL = "https://zoom.us/oauth/token"

REQUEST_TIMEOUT = 30  # seconds
TOKEN_TIMEOUT = 10  # seconds
TOKEN_REFRESH_BUFFER_SECONDS = 300
SUMMARY_RETRY_DELAY_SECONDS = 2.0
UNKNOWN_SPEAKER = "Unknown Speaker"


class ZoomAPIError(Exception):
    """Custom exception for Zoom API errors."""

    def __init__(
        self, message: str, status_code: int | None = None, response_data: dict | None = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}


def parse_transcript(content: str) -> str:
    """
    Turn a Zoom JSON transcript into "Speaker: text" lines.

    Anything that is not a JSON timeline (VTT, plain text, broken JSON) is
    returned unchanged.
    """
    stripped = content.strip()
    if not stripped.startswith(("{", "[")):
        return content

    try:
        parsed = json.loads(stripped)
    except ValueError as e:
        logger.warning("Failed to parse transcript JSON", error=str(e))
        return content

    timeline = parsed.get("timeline") if isinstance(parsed, dict) else None
    if not isinstance(timeline, list):
        return content

    lines = []
    for entry in timeline:
        if not isinstance(entry, dict):
            continue
        users = entry.get("users")
        user = users[0] if isinstance(users, list) and users else {}
        if not isinstance(user, dict):
            user = {}
        speaker = user.get("username") or user.get("zoom_userid") or UNKNOWN_SPEAKER
        lines.append(f"{speaker}: {entry.get('text') or ''}")
    return "\n".join(lines)


def extract_call_summary(details: dict) -> str:
    """Pick the AI summary out of call history details; field names vary by API version."""
    summary = details.get("summary")
    if summary:
        return str(summary)

    ai_summary = details.get("ai_call_summary")
    if isinstance(ai_summary, dict):
        return str(ai_summary.get("summary") or "")
    return str(ai_summary or "")


class ZoomService:
    """Service for the Zoom Phone REST endpoints used by the relay."""

    def __init__(
        self,
        app_settings: Settings | None = None,
        summary_retry_delay: float = SUMMARY_RETRY_DELAY_SECONDS,
    ):
        self.settings = app_settings or settings
        self.summary_retry_delay = summary_retry_delay
        self._client = httpx.AsyncClient(
            base_url=ZOOM_API_BASE_URL, timeout=httpx.Timeout(REQUEST_TIMEOUT)
        )
        self.token_cache = AccessTokenCache(
            self._fetch_access_token,
            refresh_buffer_seconds=TOKEN_REFRESH_BUFFER_SECONDS,
            provider="zoom",
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _fetch_access_token(self) -> AccessToken:
        """account_credentials grant with HTTP Basic client auth."""
        credentials = f"{self.settings.ZOOM_CLIENT_ID}:{self.settings.ZOOM_CLIENT_SECRET}"
        basic = base64.b64encode(credentials.encode()).decode()

        try:
            response = await self._client.post(
                ZOOM_TOKEN_URL,
                params={
                    "grant_type": "account_credentials",
                    "account_id": self.settings.ZOOM_ACCOUNT_ID,
                },
                headers={"Authorization": f"Basic {basic}"},
                timeout=TOKEN_TIMEOUT,
            )
        except httpx.RequestError as e:
            raise TokenAcquisitionError(f"Zoom token request failed: {e}", provider="zoom") from e

        if not response.is_success:
            raise TokenAcquisitionError(
                f"Zoom token request failed (HTTP {response.status_code})",
                provider="zoom",
                status_code=response.status_code,
            )

        payload = response.json()
        return AccessToken(
            token=payload.get("access_token") or "",
            expires_at=time.time() + int(payload.get("expires_in") or 3600),
        )

    async def _get(self, url: str, operation: str, **kwargs) -> httpx.Response:
        token = await self.token_cache.get_token()
        headers = {"Authorization": f"Bearer {token}"}
        response = await self._client.get(url, headers=headers, **kwargs)
        if not response.is_success:
            if response.status_code == 401:
                self.token_cache.invalidate()
            try:
                error_data = response.json() if response.text else {}
            except ValueError:
                error_data = {"raw": response.text[:200]}
            logger.error(
                f"Zoom API {operation} failed",
                status_code=response.status_code,
                response_data=error_data,
            )
            raise ZoomAPIError(
                f"Zoom {operation} failed (HTTP {response.status_code})",
                status_code=response.status_code,
                response_data=error_data if isinstance(error_data, dict) else {},
            )
        return response

    async def get_call_details(self, call_id: str) -> dict:
        response = await self._get(f"/phone/call_history/{call_id}", "get_call_details")
        return response.json()

    async def get_voicemail(self, voicemail_id: str) -> dict:
        response = await self._get(f"/phone/voice_mails/{voicemail_id}", "get_voicemail")
        return response.json()

    async def get_recording(self, call_id: str) -> dict:
        """
        Recording download URL and transcript for a call.

        A call without a recording is normal, so failures return an empty URL.
        """
        try:
            response = await self._get(f"/phone/recording/{call_id}", "get_recording")
        except (ZoomAPIError, httpx.HTTPError) as e:
            logger.warning("No recording available for call", call_id=call_id, error=str(e))
            return {"url": "", "transcript": None}

        data = response.json()
        return {"url": data.get("download_url") or "", "transcript": data.get("transcript")}

    async def download_file(self, url: str) -> str:
        """Download a text artifact (transcript); empty string on failure."""
        try:
            response = await self._get(url, "download_file", follow_redirects=True)
        except (ZoomAPIError, httpx.HTTPError) as e:
            logger.error("Error downloading file", url=url[:80], error=str(e))
            return ""
        return response.text

    async def _fetch_call_details_quietly(self, call_id: str) -> dict | None:
        try:
            return await self.get_call_details(call_id)
        except (ZoomAPIError, httpx.HTTPError):
            return None

    async def get_call_summary(self, call_id: str) -> str:
        """
        AI summary for a call, or an empty string.

        Zoom often publishes the summary a moment after the webhook, so one
        retry is made after a short delay.
        """
        details = await self._fetch_call_details_quietly(call_id)

        if not details or not extract_call_summary(details):
            logger.info(
                "Summary not found yet, retrying",
                call_id=call_id,
                delay_seconds=self.summary_retry_delay,
            )
            await asyncio.sleep(self.summary_retry_delay)
            details = await self._fetch_call_details_quietly(call_id)

        return extract_call_summary(details) if details else ""
