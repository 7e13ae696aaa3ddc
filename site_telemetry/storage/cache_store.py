import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from site_telemetry.core.errors import CacheError

logger = logging.getLogger(__name__)

# KEYS[1] = pointer hash; ARGV = score, doc, ttl_seconds (0 = no expiry)
SET_IF_NEWER_SCRIPT = """
local current = redis.call('HGET', KEYS[1], 'ts')
if current and tonumber(current) >= tonumber(ARGV[1]) then
    return 0
end
redis.call('HSET', KEYS[1], 'ts', ARGV[1], 'doc', ARGV[2])
if tonumber(ARGV[3]) > 0 then
    redis.call('EXPIRE', KEYS[1], ARGV[3])
end
return 1
"""

# KEYS[1] = counter; ARGV[1] = window seconds
FIXED_WINDOW_SCRIPT = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('TTL', KEYS[1])
if ttl < 0 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {current, ttl}
"""


class CacheStore:
    """Key-value cache with TTL, shared by every running instance."""

    def __init__(self, client: redis.Redis):
        self.redis = client

    async def get_json(self, key: str) -> Optional[Any]:
        try:
            data = await self.redis.get(key)
        except RedisError as e:
            raise CacheError(f"get {key} failed: {e}") from e
        if data is None:
            return None
        return json.loads(data)

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = json.dumps(value)
        try:
            if ttl_seconds > 0:
                await self.redis.set(key, payload, ex=ttl_seconds)
            else:
                await self.redis.set(key, payload)
        except RedisError as e:
            raise CacheError(f"set {key} failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except RedisError as e:
            raise CacheError(f"delete {key} failed: {e}") from e

    async def get_versioned(self, key: str) -> Optional[Any]:
        try:
            data = await self.redis.hget(key, "doc")
        except RedisError as e:
            raise CacheError(f"get {key} failed: {e}") from e
        if data is None:
            return None
        return json.loads(data)

    async def set_if_newer(
        self, key: str, value: Any, version: int, ttl_seconds: int
    ) -> bool:
        """Store ``value`` only if ``version`` is strictly above the cached one."""
        try:
            result = await self.redis.eval(
                SET_IF_NEWER_SCRIPT, 1, key, version, json.dumps(value), ttl_seconds
            )
        except RedisError as e:
            raise CacheError(f"compare-and-set {key} failed: {e}") from e
        return bool(result)

    async def hit_window(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Count one hit in the fixed window at ``key``; returns (count, ttl)."""
        try:
            result = await self.redis.eval(FIXED_WINDOW_SCRIPT, 1, key, window_seconds)
        except RedisError as e:
            raise CacheError(f"counter {key} failed: {e}") from e
        return int(result[0]), int(result[1])

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError as e:
            logger.warning("Cache ping failed: %s", e)
            return False
