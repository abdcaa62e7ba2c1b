"""
Security Headers Middleware - Add security headers to all responses.

The relay only serves JSON to Zoom and operators, so the policy blocks
framing, MIME sniffing and every browser feature.

Usage:
    from app.middleware.security_headers import SecurityHeadersMiddleware

    app.add_middleware(SecurityHeadersMiddleware, enforce_https=True)
"""

from starlette.middleware.base import BaseHTTPMiddleware

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

API_HEADERS = {
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
}
HSTS_VALUE = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all HTTP responses."""

    def __init__(self, app, enforce_https: bool = False):
        super().__init__(app)
        self.enforce_https = enforce_https
        logger.info("Security headers middleware initialized", enforce_https=enforce_https)

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        for name, value in API_HEADERS.items():
            response.headers[name] = value

        # HSTS only when TLS terminates in front of us (production)
        if self.enforce_https:
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        return response
