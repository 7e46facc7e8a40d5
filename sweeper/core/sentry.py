"""
Sentry initialization and error monitoring configuration.

Captures:
- Python exceptions
- FastAPI errors
- Token refresh and bulk action failures (via capture_business_error)
"""

import logging
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from sweeper.core.config import settings

logger = logging.getLogger(__name__)


# Keys redacted from Sentry event extras/contexts
SENSITIVE_KEYS = [
    "access_token",
    "refresh_token",
    "provider_token",
    "encrypted_access_token",
    "encrypted_refresh_token",
    "token",
    "password",
    "secret",
    "api_key",
    "encryption_key",
    "snippet",
]


def init_sentry():
    """
    Initialize Sentry error monitoring.

    Only initializes if SENTRY_DSN is configured.
    """
    if not settings.SENTRY_DSN:
        logger.info("Sentry DSN not configured - error monitoring disabled")
        return

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release="inbox-sweeper@0.1.0",
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            LoggingIntegration(
                level=logging.INFO,  # Capture info and above as breadcrumbs
                event_level=logging.ERROR,  # Send errors to Sentry
            ),
        ],
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        sample_rate=1.0,
        send_default_pii=False,
        max_breadcrumbs=50,
        before_send=filter_sensitive_data,
    )

    logger.info(f"Sentry initialized - environment: {settings.ENVIRONMENT}")


def filter_sensitive_data(event, hint):
    """
    Filter sensitive data before sending to Sentry.

    Removes OAuth tokens, keys and message snippets from extras and contexts.

    Returns:
        Modified event
    """
    def redact_dict(obj):
        if isinstance(obj, dict):
            for key in list(obj.keys()):
                if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
                    obj[key] = "[REDACTED]"
                else:
                    redact_dict(obj[key])
        elif isinstance(obj, list):
            for item in obj:
                redact_dict(item)

    if event.get("extra"):
        redact_dict(event["extra"])

    if event.get("contexts"):
        redact_dict(event["contexts"])

    return event


def capture_business_error(
    error: Exception,
    context: dict,
    level: str = "error"
):
    """
    Capture a business logic error with enriched context.

    Use this for expected errors that need tracking:
    - Token refresh failures
    - Gmail API quota errors during Super Actions

    Example:
        capture_business_error(
            error=e,
            context={"user_id": str(user_id), "operation": "refresh_access_token"},
        )
    """
    safe_context = {k: v for k, v in context.items() if "token" not in k.lower()}

    sentry_sdk.capture_exception(
        error,
        level=level,
        extras=safe_context,
    )

    logger.error(
        f"Business error captured: {error}",
        extra=safe_context,
        exc_info=True
    )
