"""Security middleware for the API.

This module provides CSRF protection, rate limiting, and security headers.
"""

import re
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette_csrf import CSRFMiddleware

from sweeper.core.config import settings


class JSONCSRFMiddleware(CSRFMiddleware):
    """starlette-csrf with the API's {"success": false, "error": ...} error body."""

    def _get_error_response(self, request: Request) -> Response:
        return JSONResponse(
            status_code=403,
            content={"success": False, "error": "CSRF token verification failed"},
        )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses."""

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Add security headers to the response."""
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "geolocation=(), microphone=(), camera=()"
        )

        # HSTS - only in production (requires HTTPS)
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        # JSON API - nothing to load
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        return response


def configure_csrf(app: FastAPI) -> None:
    """
    Configure CSRF protection middleware.

    Only requests carrying the session cookie are checked; the session
    cookie is what a forged cross-site request would ride on.
    """
    app.add_middleware(
        JSONCSRFMiddleware,
        secret=settings.SECRET_KEY,
        sensitive_cookies={"session"},
        # Cookie settings for CSRF token
        cookie_name="csrf_token",
        cookie_path="/",
        cookie_domain=None,
        cookie_secure=settings.is_production,  # Only send over HTTPS in production
        cookie_httponly=False,  # Dashboard JS needs to read this
        cookie_samesite="lax",
        # Header name that client must send
        header_name="X-CSRF-Token",
        exempt_urls=[
            re.compile(r"^/health$"),
        ],
    )


def configure_rate_limiting(app: FastAPI) -> Limiter:
    """
    Configure per-IP request limiting.

    Returns:
        The configured Limiter instance for use in route decorators
    """
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=["200/minute"],
        storage_uri=settings.RATE_LIMIT_STORAGE_URI,
        strategy="fixed-window",
        headers_enabled=True,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    return limiter


def add_security_headers(app: FastAPI) -> None:
    """Add security headers middleware to the application."""
    app.add_middleware(SecurityHeadersMiddleware)
