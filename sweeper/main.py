"""
Inbox Sweeper - Main FastAPI Application

Entry point for the application. Mounts all module routers.
"""

import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from sweeper.core.config import settings
from sweeper.core.database import init_db, close_db
from sweeper.core.exceptions import SweeperError
from sweeper.core.middleware import (
    configure_csrf,
    configure_rate_limiting,
    add_security_headers,
)
from sweeper.modules.actions.routes import router as super_actions_router
from sweeper.modules.auth.routes import router as auth_router
from sweeper.modules.gmail.client import GmailAPIError, GmailAuthError, GmailNotFound, GmailQuotaExceeded
from sweeper.modules.gmail.routes import router as gmail_router
from sweeper.modules.history.routes import router as history_router
from sweeper.modules.safety.routes import router as safe_senders_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan events.

    Runs on startup and shutdown.
    """
    logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})")

    from sweeper.core.sentry import init_sentry
    init_sentry()

    # Initialize database (only in development - use Alembic in production)
    if settings.ENVIRONMENT == "development":
        await init_db()

    yield

    logger.info("Shutting down...")
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    description="Gmail cleanup dashboard API - bulk Super Actions guarded by safe senders",
    version="0.1.0",
    docs_url="/docs" if settings.DEBUG else None,  # Disable docs in production
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:8000"] if settings.DEBUG else [settings.APP_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Security middleware (order matters!)
# 1. Session Management - must be first to handle session cookies
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.SECRET_KEY,
    max_age=86400,  # 24 hours in seconds
    same_site="lax",
    https_only=settings.is_production,
    session_cookie="session",
)

# 2. CSRF Protection - only for requests carrying the session cookie
configure_csrf(app)

# 3. Rate Limiting - protect endpoints from abuse
limiter = configure_rate_limiting(app)

# 4. Security Headers - last, applied to all responses
add_security_headers(app)

app.include_router(auth_router)
app.include_router(gmail_router)
app.include_router(safe_senders_router)
app.include_router(history_router)
app.include_router(super_actions_router)


@app.exception_handler(SweeperError)
async def sweeper_error_handler(request: Request, exc: SweeperError):
    """Convert application errors to {"success": false, "error": ...}."""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


@app.exception_handler(GmailAPIError)
async def gmail_error_handler(request: Request, exc: GmailAPIError):
    """Gmail failures on single-message endpoints."""
    if isinstance(exc, GmailNotFound):
        status_code = 404
    elif isinstance(exc, GmailAuthError):
        status_code = 401
    elif isinstance(exc, GmailQuotaExceeded):
        status_code = 429
    else:
        status_code = 502

    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": str(exc)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Super Actions report malformed requests as 400 {"success": false, "error": ...}."""
    if not request.url.path.startswith("/super-actions"):
        return await request_validation_exception_handler(request, exc)

    detail = "Invalid request"
    errors = exc.errors()
    if errors:
        # loc starts with the source: body, path or query
        field = ".".join(str(part) for part in errors[0]["loc"][1:])
        detail = f"{detail}: {field}: {errors[0]['msg']}"

    return JSONResponse(
        status_code=400,
        content={"success": False, "error": detail},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Anything unexpected becomes a 500 with the standard error body."""
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}",
        exc_info=exc,
    )
    sentry_sdk.capture_exception(exc)

    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Server error"},
    )


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring.

    Status values:
    - healthy: All systems operational
    - degraded: Some warnings but functional
    - unhealthy: Critical components down
    """
    from sweeper.core.health import get_health_metrics

    metrics = await get_health_metrics()

    return {
        "service": settings.APP_NAME,
        "version": "0.1.0",
        "environment": settings.ENVIRONMENT,
        **metrics,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "sweeper.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
