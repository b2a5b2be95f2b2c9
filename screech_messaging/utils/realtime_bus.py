import logging
from typing import Optional

import redis.asyncio as redis

from screech_messaging.core.config import Settings, get_settings


logger = logging.getLogger(__name__)

PRESENCE_TTL_SECONDS = 60
PRESENCE_HEARTBEAT_SECONDS = 30


class NoopBus:

    enabled = False

    async def set_presence(self, user_id: str, ttl_seconds: int = PRESENCE_TTL_SECONDS) -> None:
        return

    async def clear_presence(self, user_id: str) -> None:
        return

    async def is_present(self, user_id: str) -> bool:
        return False

    async def close(self) -> None:
        return


class RedisBus:
    """Presence keys shared between app instances: ``presence:<user_id>`` with a TTL."""

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def set_presence(self, user_id: str, ttl_seconds: int = PRESENCE_TTL_SECONDS) -> None:
        await self._redis.set(f"presence:{user_id}", "online", ex=ttl_seconds)

    async def clear_presence(self, user_id: str) -> None:
        await self._redis.delete(f"presence:{user_id}")

    async def is_present(self, user_id: str) -> bool:
        ttl = await self._redis.ttl(f"presence:{user_id}")
        return bool(ttl and ttl > 0)

    async def close(self) -> None:
        await self._redis.aclose()


_bus: Optional[NoopBus | RedisBus] = None


async def get_bus(settings: Settings | None = None):
    global _bus
    if _bus is not None:
        return _bus
    settings = settings or get_settings()
    if not settings.redis_url:
        _bus = NoopBus()
        return _bus
    _bus = RedisBus(settings.redis_url)
    logger.info("Redis presence enabled")
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
    _bus = None
