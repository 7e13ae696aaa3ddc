import logging
import time
from typing import Callable

from site_telemetry.config.settings import Settings
from site_telemetry.core.errors import CacheError, TooManyRequests
from site_telemetry.storage.cache_store import CacheStore

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window admission control with counters in the shared cache.

    If the counter store is unreachable the request is admitted and the
    failure logged.
    """

    def __init__(
        self,
        settings: Settings,
        cache: CacheStore,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.settings = settings
        self.clock = clock

    @staticmethod
    def tracker_key(device_id: str) -> str:
        return f"device_{device_id}"

    async def check_rate_limit(
        self,
        identifier: str,
        max_requests: int,
        window_seconds: int,
    ) -> tuple[bool, int]:
        window = int(self.clock() // window_seconds)
        key = f"ratelimit:{identifier}:{window}"

        try:
            count, _ttl = await self.cache.hit_window(key, window_seconds)
        except CacheError as e:
            logger.warning("rate_limit_unavailable tracker=%s reason=%s", identifier, e)
            return True, max_requests

        return count <= max_requests, max(max_requests - count, 0)

    async def check_device_rate_limit(self, device_id: str) -> tuple[bool, int]:
        return await self.check_rate_limit(
            self.tracker_key(device_id),
            self.settings.rate_limit_max_requests,
            self.settings.rate_limit_window_seconds,
        )

    async def enforce_device_rate_limit(self, device_id: str) -> int:
        allowed, remaining = await self.check_device_rate_limit(device_id)
        if not allowed:
            logger.info("rate_limited tracker=%s", self.tracker_key(device_id))
            raise TooManyRequests(
                f"Rate limit exceeded for device {device_id}",
                retry_after=self.settings.rate_limit_window_seconds,
            )
        return remaining

    async def check_ingest_rate_limit(self) -> tuple[bool, int]:
        return await self.check_rate_limit(
            "ingest",
            self.settings.rate_limit_ingest_per_second,
            1,
        )
