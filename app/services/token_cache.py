"""
Access token cache shared by the outbound API clients.

Each client owns one cache. The cached token is reused until it is within
the refresh buffer of its expiry, then fetched again lazily on next use.
Everything runs on one event loop so no lock is taken; two jobs that both
hit an expired token may refresh twice, which only costs one extra request.
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class TokenAcquisitionError(Exception):
    """Raised when an OAuth token endpoint does not return a usable token."""

    def __init__(self, message: str, provider: str, status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


@dataclass(slots=True)
class AccessToken:
    token: str
    expires_at: float  # unix seconds


class AccessTokenCache:
    """Expiry-aware holder for a single bearer token."""

    def __init__(
        self,
        fetch: Callable[[], Awaitable[AccessToken]],
        refresh_buffer_seconds: float,
        provider: str,
        clock: Callable[[], float] = time.time,
    ):
        self._fetch = fetch
        self.refresh_buffer_seconds = refresh_buffer_seconds
        self.provider = provider
        self._clock = clock
        self._token: AccessToken | None = None

    def is_fresh(self) -> bool:
        if self._token is None:
            return False
        return self._clock() < self._token.expires_at - self.refresh_buffer_seconds

    async def get_token(self) -> str:
        """Return a valid token, fetching a new one when the cached one is stale."""
        if self.is_fresh():
            return self._token.token

        logger.info("Fetching new access token", provider=self.provider)
        token = await self._fetch()
        if not token.token:
            raise TokenAcquisitionError(
                "Token endpoint returned an empty token", provider=self.provider
            )

        self._token = token
        logger.info(
            "Access token obtained",
            provider=self.provider,
            expires_in_seconds=round(token.expires_at - self._clock()),
        )
        return token.token

    def invalidate(self) -> None:
        """Drop the cached token, e.g. after a 401."""
        self._token = None
