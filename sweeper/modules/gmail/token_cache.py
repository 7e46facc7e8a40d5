"""
Access token cache, keyed by user.

Two backends:
- MemoryTokenCache: process-local dict (lost on restart, not shared)
- RedisTokenCache: shared across server instances so they reuse one refresh

The cache never holds refresh tokens.
"""

import json
import logging
from datetime import datetime
from typing import Dict, Optional
from uuid import UUID

import redis.asyncio as redis

from sweeper.core.config import settings
from sweeper.core.security import encrypt_token, decrypt_token
from sweeper.modules.gmail.token_store import TokenData

logger = logging.getLogger(__name__)


class TokenCache:
    """Interface for access token caches."""

    async def get(self, user_id: UUID) -> Optional[TokenData]:
        raise NotImplementedError

    async def set(self, user_id: UUID, data: TokenData) -> None:
        raise NotImplementedError

    async def invalidate(self, user_id: UUID) -> None:
        raise NotImplementedError


class MemoryTokenCache(TokenCache):
    """Process-local cache."""

    def __init__(self):
        self._tokens: Dict[str, TokenData] = {}

    async def get(self, user_id: UUID) -> Optional[TokenData]:
        return self._tokens.get(str(user_id))

    async def set(self, user_id: UUID, data: TokenData) -> None:
        self._tokens[str(user_id)] = TokenData(
            access_token=data.access_token,
            refresh_token=None,
            expires_at=data.expires_at,
        )

    async def invalidate(self, user_id: UUID) -> None:
        self._tokens.pop(str(user_id), None)


class RedisTokenCache(TokenCache):
    """
    Redis-backed cache shared by all server instances.

    Entries are encrypted and expire together with the access token.
    """

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis client (lazy initialization)."""
        if not self._redis:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
        return self._redis

    def _key(self, user_id: UUID) -> str:
        return f"gmail_token:{user_id}"

    async def get(self, user_id: UUID) -> Optional[TokenData]:
        redis_client = await self._get_redis()
        raw = await redis_client.get(self._key(user_id))
        if not raw:
            return None

        payload = json.loads(raw)
        return TokenData(
            access_token=decrypt_token(payload["access_token"]),
            refresh_token=None,
            expires_at=datetime.fromisoformat(payload["expires_at"]),
        )

    async def set(self, user_id: UUID, data: TokenData) -> None:
        ttl = int((data.expires_at - datetime.utcnow()).total_seconds())
        if ttl <= 0:
            return

        redis_client = await self._get_redis()
        payload = json.dumps({
            "access_token": encrypt_token(data.access_token),
            "expires_at": data.expires_at.isoformat(),
        })
        await redis_client.setex(self._key(user_id), ttl, payload)

    async def invalidate(self, user_id: UUID) -> None:
        redis_client = await self._get_redis()
        await redis_client.delete(self._key(user_id))

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()


# Global token cache instance
_global_cache: Optional[TokenCache] = None


def get_token_cache() -> TokenCache:
    """
    Get global token cache (singleton), backend chosen by TOKEN_CACHE_BACKEND.

    Usage:
        cache = get_token_cache()
    """
    global _global_cache
    if not _global_cache:
        if settings.TOKEN_CACHE_BACKEND == "redis":
            _global_cache = RedisTokenCache()
        else:
            _global_cache = MemoryTokenCache()
        logger.info(f"Token cache backend: {type(_global_cache).__name__}")
    return _global_cache
