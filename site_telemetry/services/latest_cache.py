import logging

from site_telemetry.config.settings import Settings
from site_telemetry.core.errors import CacheError, NotFound
from site_telemetry.core.timeutil import to_epoch_us
from site_telemetry.models.telemetry import TelemetryRecord
from site_telemetry.pipeline.cache_keys import latest_cache_key
from site_telemetry.storage.cache_store import CacheStore
from site_telemetry.storage.telemetry_store import TelemetryStore

logger = logging.getLogger(__name__)


class LatestCache:
    """Cache-aside index of the newest reading per device.

    The cache is never authoritative: any pointer can be rebuilt from the
    store, so every cache failure here degrades to a store read or a no-op.
    """

    def __init__(self, settings: Settings, store: TelemetryStore, cache: CacheStore):
        self.store = store
        self.cache = cache
        self.ttl_seconds = settings.latest_cache_ttl_seconds

    @staticmethod
    def pointer_key(device_id: str) -> str:
        return f"latestTelemetry:{device_id}"

    async def get_latest(self, device_id: str) -> TelemetryRecord:
        try:
            cached = await self.cache.get_versioned(self.pointer_key(device_id))
        except CacheError as e:
            logger.warning("latest_cache_read_failed device=%s reason=%s", device_id, e)
            cached = None

        if cached is not None:
            logger.debug("latest_cache_hit device=%s", device_id)
            return TelemetryRecord.model_validate(cached)

        logger.info("latest_cache_miss device=%s", device_id)
        record = await self.store.find_latest(device_id)
        if record is None:
            raise NotFound("No telemetry data found")

        await self.refresh_latest(record)
        return record

    async def refresh_latest(self, record: TelemetryRecord) -> bool:
        """Advance the pointer to ``record`` unless the cached one is as new.

        Returns True when the pointer moved. Never raises on cache failure.
        """
        try:
            advanced = await self.cache.set_if_newer(
                self.pointer_key(record.device_id),
                record.model_dump(mode="json", by_alias=True),
                to_epoch_us(record.timestamp),
                self.ttl_seconds,
            )
        except CacheError as e:
            logger.warning(
                "latest_cache_refresh_failed device=%s site=%s ts=%s reason=%s",
                record.device_id,
                record.site_id,
                record.timestamp.isoformat(),
                e,
            )
            return False

        if advanced:
            try:
                await self.cache.delete(latest_cache_key(record.device_id))
            except CacheError as e:
                logger.warning(
                    "latest_response_invalidation_failed device=%s reason=%s",
                    record.device_id,
                    e,
                )
        return advanced
