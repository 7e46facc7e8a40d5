"""
Health check utilities for monitoring application components.

Checks:
- Database connectivity
- Redis connectivity (OAuth state, shared token cache)
- Gmail OAuth configuration
"""

import logging
from datetime import datetime
from typing import Dict, Any

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError

from sweeper.core.config import settings
from sweeper.core.database import AsyncSessionLocal

logger = logging.getLogger(__name__)


async def check_database() -> Dict[str, Any]:
    """
    Check PostgreSQL database connectivity.

    Returns:
        Dict with status, latency, and error (if any)
    """
    start_time = datetime.utcnow()

    try:
        async with AsyncSessionLocal() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()

        latency_ms = (datetime.utcnow() - start_time).total_seconds() * 1000

        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
        }
    except OperationalError as e:
        logger.error(f"Database health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
        }
    except Exception as e:
        logger.error(f"Unexpected database error: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
        }


async def check_redis() -> Dict[str, Any]:
    """
    Check Redis connectivity.

    Redis is only required for login (OAuth state) and the shared token
    cache, so a failure degrades rather than takes the service down.
    """
    start_time = datetime.utcnow()
    redis_client = redis.from_url(settings.REDIS_URL, socket_connect_timeout=2)

    try:
        await redis_client.ping()
        latency_ms = (datetime.utcnow() - start_time).total_seconds() * 1000
        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
        }
    except RedisConnectionError as e:
        logger.error(f"Redis health check failed: {e}")
        return {
            "status": "warning",
            "error": str(e),
        }
    finally:
        await redis_client.aclose()


async def check_gmail_oauth() -> Dict[str, Any]:
    """
    Check Gmail OAuth configuration.

    Lightweight - verifies credentials are configured, makes no API calls.
    """
    if not settings.has_google_credentials:
        return {
            "status": "unhealthy",
            "error": "Gmail OAuth credentials not configured",
        }

    return {
        "status": "healthy",
        "configured": True,
    }


async def get_health_metrics() -> Dict[str, Any]:
    """
    Get health metrics for all components.

    Returns:
        Dict with overall status and component-specific metrics
    """
    metrics = {
        "database": await check_database(),
        "redis": await check_redis(),
        "gmail_oauth": await check_gmail_oauth(),
    }

    unhealthy_components = [
        component for component, status in metrics.items()
        if status.get("status") == "unhealthy"
    ]

    if unhealthy_components:
        overall_status = "unhealthy"
    elif any(status.get("status") == "warning" for status in metrics.values()):
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return {
        "status": overall_status,
        "timestamp": datetime.utcnow().isoformat(),
        "components": metrics,
    }
