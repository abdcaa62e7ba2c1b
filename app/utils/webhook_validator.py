"""Zoom webhook signature verification."""

import hashlib
import hmac

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_VERSION = "v0"


def compute_zoom_signature(body: bytes | str, timestamp: str, secret_token: str) -> str:
    """v0=HMAC_SHA256(secret, "v0:{timestamp}:{body}") as hex."""
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    message = f"{SIGNATURE_VERSION}:{timestamp}:{body}"
    digest = hmac.new(secret_token.encode(), message.encode(), hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def validate_zoom_webhook(
    body: bytes | str, timestamp: str, signature: str, secret_token: str
) -> bool:
    """Constant-time comparison of the x-zm-signature header with the expected value."""
    if not secret_token:
        logger.error("Zoom webhook secret token is not configured")
        return False
    try:
        expected = compute_zoom_signature(body, timestamp, secret_token)
    except UnicodeDecodeError as e:
        logger.warning("Webhook body is not valid UTF-8", error=str(e))
        return False
    return hmac.compare_digest(signature.encode(), expected.encode())
