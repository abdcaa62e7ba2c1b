import ipaddress
from pathlib import Path
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"

LOOPBACK_HOSTNAMES = {"localhost", "localhost.localdomain", "ip6-localhost", "0.0.0.0"}

REQUIRED_SETTINGS = [
    "APPLICATION_ID",
    "TENANT_ID",
    "CLIENT_SECRET_VALUE",
    "SHAREPOINT_SITE_ID",
    "SALES_LEADS_LIST_ID",
    "TEAMS_TEAM_ID",
    "TEAMS_CHANNEL_ID",
    "ZOOM_ACCOUNT_ID",
    "ZOOM_CLIENT_ID",
    "ZOOM_CLIENT_SECRET",
    "ZOOM_WEBHOOK_SECRET_TOKEN",
]


class ConfigurationError(Exception):
    """Raised when required configuration is missing at startup."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    # Azure AD app registration
    APPLICATION_ID: str | None = None
    TENANT_ID: str | None = None
    CLIENT_SECRET_VALUE: str | None = None

    # Microsoft 365 targets
    SHAREPOINT_SITE_ID: str | None = None
    SALES_LEADS_LIST_ID: str | None = None
    SALES_CALLS_LIST_ID: str | None = None
    TEAMS_TEAM_ID: str | None = None
    TEAMS_CHANNEL_ID: str | None = None
    TEAMS_WEBHOOK_URL: str | None = None
    PLANNER_PLAN_ID: str | None = None

    # Zoom settings
    ZOOM_ACCOUNT_ID: str | None = None
    ZOOM_CLIENT_ID: str | None = None
    ZOOM_CLIENT_SECRET: str | None = None
    ZOOM_WEBHOOK_SECRET_TOKEN: str | None = None

    # =================================================================
    # QUEUE SETTINGS - Redis is optional, in-memory otherwise
    # =================================================================
    REDIS_URL: str | None = None
    QUEUE_PREFIX: str = "zoom-relay"
    QUEUE_ATTEMPTS: int = 3
    QUEUE_BACKOFF_DELAY_SECONDS: float = 2.0

    # Request context
    TRUST_X_FORWARDED_FOR: bool = False
    TRUSTED_PROXY_IPS: list[str] = []

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def missing_required(self) -> list[str]:
        """Names of required variables that are unset or empty."""
        return [name for name in REQUIRED_SETTINGS if not getattr(self, name, None)]

    def validate_required(self) -> None:
        """Fail fast on startup when the integration cannot work."""
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}",
                missing=missing,
            )

    def redis_host(self) -> str | None:
        """Extract the broker host from REDIS_URL, e.g. redis://cache:6379/0 -> cache."""
        if not self.REDIS_URL:
            return None
        try:
            return urlparse(self.REDIS_URL.strip()).hostname
        except ValueError:
            return None

    def use_durable_queue(self) -> bool:
        """
        Decide between the Redis and the in-memory queue backend.

        Redis is only used when REDIS_URL points at a non-loopback host, so a
        deployment never silently depends on a broker that only exists on a
        developer machine.
        """
        host = self.redis_host()
        if not host:
            return False
        return not is_loopback_host(host)


def is_loopback_host(host: str) -> bool:
    """Check whether a hostname or IP literal refers to the local machine."""
    normalized = host.strip().strip("[]").lower()
    if normalized in LOOPBACK_HOSTNAMES:
        return True
    try:
        address = ipaddress.ip_address(normalized)
    except ValueError:
        return False
    return address.is_loopback or address.is_unspecified


settings = Settings()
