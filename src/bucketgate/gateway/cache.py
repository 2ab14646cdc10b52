"""Redis-backed record of keys recently confirmed to exist in the bucket."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from redis.asyncio import Redis, from_url as redis_from_url
from redis.exceptions import RedisError

from ..common.settings import GatewaySettings


class CacheError(Exception):
    """Raised for any cache failure other than a plain miss."""


class ExistenceCache(Protocol):
    async def get(self, key: str) -> Optional[str]:
        """Return the stored marker, or ``None`` when the key is unknown."""
        ...

    async def set(self, key: str, value: str) -> None:
        ...


def confirmation_marker(now: Optional[datetime] = None) -> str:
    return (now if now is not None else datetime.now()).isoformat()


class RedisExistenceCache:
    """Entries are written without a TTL and are never deleted here."""

    def __init__(self, redis: Redis):
        self._redis = redis

    @classmethod
    def from_settings(cls, settings: GatewaySettings) -> "RedisExistenceCache":
        redis = redis_from_url(
            str(settings.redis_url),
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout_seconds,
            socket_connect_timeout=settings.redis_socket_timeout_seconds,
        )
        return cls(redis)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._redis.get(key)
        except RedisError as exc:
            raise CacheError(str(exc)) from exc

    async def set(self, key: str, value: str) -> None:
        try:
            await self._redis.set(key, value)
        except RedisError as exc:
            raise CacheError(str(exc)) from exc

    async def close(self) -> None:
        await self._redis.aclose()
