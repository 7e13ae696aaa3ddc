import json
import time
from datetime import datetime

import httpx
import pytest
from fastapi.testclient import TestClient

from site_telemetry.config.settings import Settings
from site_telemetry.core.errors import CacheError, StorageError
from site_telemetry.main import create_app

WEBHOOK_URL = "http://alerts.test/hook"


class FakeTelemetryStore:
    """In-memory stand-in for the Redis record store."""

    def __init__(self):
        self.records = []
        self.events = {}
        self.fail = False
        self.insert_calls = 0

    async def insert_many(self, records):
        self.insert_calls += 1
        if self.fail:
            raise StorageError("store unavailable")

        stored = []
        for record in records:
            if record.event_id and record.event_id in self.events:
                stored.append((self.events[record.event_id], False))
                continue
            if record.event_id:
                self.events[record.event_id] = record
            self.records.append(record)
            stored.append((record, True))
        return stored

    async def find_latest(self, device_id):
        matches = [r for r in self.records if r.device_id == device_id]
        if not matches:
            return None
        return max(matches, key=lambda r: r.timestamp)

    async def find_by_site(self, site_id, start_time=None, end_time=None):
        return [
            r
            for r in self.records
            if r.site_id == site_id
            and (start_time is None or r.timestamp >= start_time)
            and (end_time is None or r.timestamp <= end_time)
        ]

    async def ping(self):
        return not self.fail


class FakeCacheStore:
    """In-memory stand-in for the Redis cache with switchable failures."""

    def __init__(self):
        self.values = {}
        self.pointers = {}
        self.counters = {}
        self.fail_reads = False
        self.fail_writes = False

    def _check(self, failing):
        if failing:
            raise CacheError("cache unavailable")

    async def get_json(self, key):
        self._check(self.fail_reads)
        return self.values.get(key)

    async def set_json(self, key, value, ttl_seconds):
        self._check(self.fail_writes)
        self.values[key] = json.loads(json.dumps(value))

    async def delete(self, key):
        self._check(self.fail_writes)
        self.values.pop(key, None)

    async def get_versioned(self, key):
        self._check(self.fail_reads)
        entry = self.pointers.get(key)
        return entry[1] if entry else None

    async def set_if_newer(self, key, value, version, ttl_seconds):
        self._check(self.fail_writes)
        current = self.pointers.get(key)
        if current is not None and current[0] >= version:
            return False
        self.pointers[key] = (version, json.loads(json.dumps(value)))
        return True

    async def hit_window(self, key, window_seconds):
        self._check(self.fail_writes)
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key], window_seconds

    async def ping(self):
        return not (self.fail_reads or self.fail_writes)


class WebhookRecorder:
    def __init__(self):
        self.payloads = []
        self.status_code = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.payloads.append(json.loads(request.content))
        return httpx.Response(self.status_code)


def make_record(
    device_id="dev-1",
    site_id="site-A",
    ts="2025-01-01T10:00:00Z",
    temperature=21.5,
    humidity=40.0,
    **extra,
):
    record = {
        "deviceId": device_id,
        "siteId": site_id,
        "timestamp": ts,
        "metrics": {"temperature": temperature, "humidity": humidity},
    }
    record.update(extra)
    return record


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        alert_webhook_url=WEBHOOK_URL,
        rate_limit_max_requests=5,
        rate_limit_window_seconds=60,
        worker_count=2,
    )


@pytest.fixture
def store():
    return FakeTelemetryStore()


@pytest.fixture
def cache():
    return FakeCacheStore()


@pytest.fixture
def webhook():
    return WebhookRecorder()


@pytest.fixture
def http_client(webhook):
    return httpx.AsyncClient(transport=httpx.MockTransport(webhook))


@pytest.fixture
def app(settings, store, cache, http_client):
    application = create_app(settings, store=store, cache=cache, http_client=http_client)
    application.state.rate_limiter.clock = lambda: 1_000_000.0
    return application


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def eventually():
    def wait(predicate, timeout=2.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return predicate()

    return wait


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def utc():
    def parse(value):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))

    return parse
