"""
Latest-pointer cache tests.
"""

import pytest

from site_telemetry.core.errors import NotFound
from site_telemetry.services.latest_cache import LatestCache
from site_telemetry.services.validator import RecordValidator


@pytest.fixture
def latest(settings, store, cache):
    return LatestCache(settings, store, cache)


@pytest.fixture
def build(settings, record_factory):
    validator = RecordValidator(settings)

    def build_record(**kwargs):
        return validator.validate(record_factory(**kwargs))

    return build_record


async def test_newer_record_advances_pointer(latest, build):
    older = build(ts="2025-01-01T10:00:00Z", temperature=20)
    newer = build(ts="2025-01-01T11:00:00Z", temperature=30)

    assert await latest.refresh_latest(older) is True
    assert await latest.refresh_latest(newer) is True

    assert (await latest.get_latest("dev-1")).id == newer.id


async def test_older_record_never_overwrites(latest, build):
    newer = build(ts="2025-01-01T11:00:00Z")
    older = build(ts="2025-01-01T10:00:00Z")

    await latest.refresh_latest(newer)
    assert await latest.refresh_latest(older) is False

    assert (await latest.get_latest("dev-1")).id == newer.id


async def test_equal_timestamp_does_not_overwrite(latest, build):
    first = build(temperature=20)
    second = build(temperature=25)

    await latest.refresh_latest(first)
    assert await latest.refresh_latest(second) is False

    assert (await latest.get_latest("dev-1")).metrics.temperature == 20


async def test_devices_are_independent(latest, build):
    await latest.refresh_latest(build(device_id="dev-1", ts="2025-01-02T00:00:00Z"))
    assert await latest.refresh_latest(build(device_id="dev-2", ts="2025-01-01T00:00:00Z"))


async def test_miss_falls_back_to_store_and_populates(latest, store, cache, build):
    store.records.extend(
        [build(ts="2025-01-01T09:00:00Z"), build(ts="2025-01-01T12:00:00Z")]
    )

    record = await latest.get_latest("dev-1")

    assert record.timestamp.hour == 12
    assert LatestCache.pointer_key("dev-1") in cache.pointers


async def test_hit_does_not_touch_store(latest, store, build):
    await latest.refresh_latest(build())
    store.fail = True

    assert (await latest.get_latest("dev-1")).device_id == "dev-1"


async def test_unknown_device_is_not_found(latest):
    with pytest.raises(NotFound):
        await latest.get_latest("dev-404")


async def test_cache_read_failure_falls_back_to_store(latest, store, cache, build):
    store.records.append(build())
    cache.fail_reads = True

    assert (await latest.get_latest("dev-1")).device_id == "dev-1"


async def test_cache_write_failure_is_swallowed(latest, cache, build):
    cache.fail_writes = True

    assert await latest.refresh_latest(build()) is False


async def test_advancing_pointer_drops_cached_latest_response(latest, cache, build):
    cache.values["latest:dev-1"] = {"stale": True}

    await latest.refresh_latest(build())

    assert "latest:dev-1" not in cache.values


async def test_sub_millisecond_newer_record_advances_pointer(latest, build):
    first = build(ts="2025-01-01T10:00:00.000100Z", temperature=1)
    second = build(ts="2025-01-01T10:00:00.000900Z", temperature=2)

    await latest.refresh_latest(first)
    assert await latest.refresh_latest(second) is True

    assert (await latest.get_latest("dev-1")).metrics.temperature == 2
