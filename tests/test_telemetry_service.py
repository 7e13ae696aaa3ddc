"""
Ingest orchestration tests: persistence first, side effects isolated.
"""

import math

import pytest

from site_telemetry.core.errors import InvalidRecord, StorageError
from site_telemetry.core.worker import BackgroundWorker
from site_telemetry.services.alert_service import AlertDispatcher, AlertEvaluator
from site_telemetry.services.latest_cache import LatestCache
from site_telemetry.services.summary_service import SummaryAggregator
from site_telemetry.services.telemetry_service import TelemetryService
from site_telemetry.services.validator import RecordValidator


@pytest.fixture
async def worker(settings):
    background = BackgroundWorker(settings)
    await background.start()
    yield background
    await background.stop()


@pytest.fixture
def service(settings, store, cache, http_client, worker):
    return TelemetryService(
        validator=RecordValidator(settings),
        store=store,
        latest_cache=LatestCache(settings, store, cache),
        aggregator=SummaryAggregator(store),
        evaluator=AlertEvaluator(settings),
        dispatcher=AlertDispatcher(settings, http_client),
        worker=worker,
    )


async def test_single_ingest_returns_single_record(service, store, record_factory):
    result = await service.ingest(record_factory())

    assert result.device_id == "dev-1"
    assert store.records == [result]


async def test_batch_ingest_returns_list_in_one_write(service, store, record_factory):
    result = await service.ingest(
        [record_factory(), record_factory(device_id="dev-2")]
    )

    assert [r.device_id for r in result] == ["dev-1", "dev-2"]
    assert store.insert_calls == 1


async def test_side_effects_run_after_persist(service, worker, cache, webhook, record_factory):
    await service.ingest(record_factory(temperature=51, humidity=91))
    await worker.drain()

    assert LatestCache.pointer_key("dev-1") in cache.pointers
    assert [p["reason"] for p in webhook.payloads] == ["HighTemperature", "HighHumidity"]


async def test_invalid_record_has_no_side_effects(service, worker, store, cache, webhook, record_factory):
    with pytest.raises(InvalidRecord):
        await service.ingest(record_factory(temperature=math.inf))
    await worker.drain()

    assert store.insert_calls == 0
    assert cache.pointers == {}
    assert webhook.payloads == []


async def test_storage_failure_has_no_side_effects(service, worker, store, cache, webhook, record_factory):
    store.fail = True

    with pytest.raises(StorageError) as exc_info:
        await service.ingest(record_factory(temperature=90))
    await worker.drain()

    assert exc_info.value.message == "Failed to create telemetry record(s)"
    assert cache.pointers == {}
    assert webhook.payloads == []


async def test_cache_failure_does_not_fail_ingest(service, worker, cache, webhook, record_factory):
    cache.fail_writes = True

    result = await service.ingest(record_factory(temperature=70))
    await worker.drain()

    assert result.metrics.temperature == 70
    assert len(webhook.payloads) == 1


async def test_webhook_failure_does_not_fail_ingest(service, worker, cache, webhook, record_factory):
    webhook.status_code = 500

    await service.ingest(record_factory(temperature=70))
    await worker.drain()

    assert LatestCache.pointer_key("dev-1") in cache.pointers


@pytest.mark.parametrize("order", [("t1", "t2"), ("t2", "t1")])
async def test_latest_is_monotonic_in_any_arrival_order(service, worker, record_factory, order):
    records = {
        "t1": record_factory(ts="2025-01-01T10:00:00Z", temperature=10),
        "t2": record_factory(ts="2025-01-01T11:00:00Z", temperature=20),
    }

    for name in order:
        await service.ingest(records[name])
    await worker.drain()

    assert (await service.get_latest("dev-1")).metrics.temperature == 20


async def test_latest_orders_readings_within_one_millisecond(service, worker, record_factory):
    await service.ingest(record_factory(ts="2025-01-01T10:00:00.000100Z", temperature=1))
    await service.ingest(record_factory(ts="2025-01-01T10:00:00.000900Z", temperature=2))
    await worker.drain()

    assert (await service.get_latest("dev-1")).metrics.temperature == 2


async def test_duplicate_event_id_is_ignored(service, worker, store, webhook, record_factory):
    first = await service.ingest(record_factory(eventId="evt-1", temperature=60))
    await worker.drain()

    second = await service.ingest(record_factory(eventId="evt-1", temperature=61))
    await worker.drain()

    assert second.id == first.id
    assert second.metrics.temperature == 60
    assert len(store.records) == 1
    assert len(webhook.payloads) == 1


async def test_records_without_event_id_are_not_deduplicated(service, store, record_factory):
    await service.ingest([record_factory(), record_factory()])

    assert len(store.records) == 2


async def test_summarize_delegates_to_aggregator(service, record_factory, utc):
    await service.ingest([record_factory(temperature=10), record_factory(device_id="dev-2", temperature=30)])

    summary = await service.summarize(
        "site-A", utc("2025-01-01T00:00:00Z"), utc("2025-01-02T00:00:00Z")
    )

    assert summary.count == 2
    assert summary.avg_temperature == 20


async def test_worker_before_start_has_no_queue(settings):
    background = BackgroundWorker(settings)

    assert background.queue is None
    assert background.get_queue_size() == 0
    assert background.submit("noop", lambda: None) is False
    assert background.dropped_count == 1
    await background.stop()
