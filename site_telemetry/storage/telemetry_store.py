import logging
from datetime import datetime
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from site_telemetry.config.settings import Settings
from site_telemetry.core.errors import StorageError
from site_telemetry.core.timeutil import to_epoch_us
from site_telemetry.models.telemetry import TelemetryRecord

logger = logging.getLogger(__name__)

# Per record ARGV layout: event_id, device_key, site_key, score, doc.
# Returns a flat list of (inserted_flag, doc) pairs in input order.
INSERT_MANY_SCRIPT = """
local count = tonumber(ARGV[1])
local event_prefix = ARGV[2]
local event_ttl = tonumber(ARGV[3])
local result = {}

for i = 0, count - 1 do
    local base = 4 + i * 5
    local event_id = ARGV[base]
    local device_key = ARGV[base + 1]
    local site_key = ARGV[base + 2]
    local score = ARGV[base + 3]
    local doc = ARGV[base + 4]
    local existing = false

    if event_id ~= '' then
        existing = redis.call('GET', event_prefix .. event_id)
        if not existing then
            redis.call('SET', event_prefix .. event_id, doc, 'EX', event_ttl)
        end
    end

    if existing then
        table.insert(result, 0)
        table.insert(result, existing)
    else
        redis.call('ZADD', device_key, score, doc)
        redis.call('ZADD', site_key, score, doc)
        table.insert(result, 1)
        table.insert(result, doc)
    end
end

return result
"""


class TelemetryStore:
    """Durable record store on Redis sorted sets scored by epoch microseconds.

    Each record is indexed twice, under its device and under its site. The
    whole batch is written by one script, so it lands atomically.
    """

    def __init__(self, client: redis.Redis, settings: Settings):
        self.redis = client
        self.dedupe_event_ids = settings.dedupe_event_ids
        self.event_id_retention_seconds = settings.event_id_retention_seconds

    @staticmethod
    def device_key(device_id: str) -> str:
        return f"telemetry:device:{device_id}"

    @staticmethod
    def site_key(site_id: str) -> str:
        return f"telemetry:site:{site_id}"

    async def insert_many(
        self, records: list[TelemetryRecord]
    ) -> list[tuple[TelemetryRecord, bool]]:
        """Persist records; returns each stored record with an ``inserted`` flag.

        A record whose ``eventId`` was already persisted is not written again;
        the originally stored record is returned in its place.
        """
        args: list = [len(records), "telemetry:event:", self.event_id_retention_seconds]
        for record in records:
            event_id = record.event_id if self.dedupe_event_ids else None
            args.extend(
                [
                    event_id or "",
                    self.device_key(record.device_id),
                    self.site_key(record.site_id),
                    to_epoch_us(record.timestamp),
                    record.model_dump_json(by_alias=True),
                ]
            )

        try:
            result = await self.redis.eval(INSERT_MANY_SCRIPT, 0, *args)
        except RedisError as e:
            raise StorageError(f"insert of {len(records)} record(s) failed: {e}") from e

        stored = []
        for flag, doc in zip(result[0::2], result[1::2]):
            stored.append((TelemetryRecord.model_validate_json(doc), bool(int(flag))))
        return stored

    async def find_latest(self, device_id: str) -> Optional[TelemetryRecord]:
        try:
            results = await self.redis.zrange(self.device_key(device_id), -1, -1)
        except RedisError as e:
            raise StorageError(f"latest lookup for {device_id} failed: {e}") from e

        if not results:
            return None
        return TelemetryRecord.model_validate_json(results[0])

    async def find_by_site(
        self,
        site_id: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> list[TelemetryRecord]:
        min_score = to_epoch_us(start_time) if start_time else "-inf"
        max_score = to_epoch_us(end_time) if end_time else "+inf"

        try:
            results = await self.redis.zrangebyscore(
                self.site_key(site_id), min_score, max_score
            )
        except RedisError as e:
            raise StorageError(f"site query for {site_id} failed: {e}") from e

        return [TelemetryRecord.model_validate_json(doc) for doc in results]

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError as e:
            logger.warning("Store ping failed: %s", e)
            return False
