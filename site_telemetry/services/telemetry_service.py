import logging
from datetime import datetime
from typing import Any, Optional, Union

from site_telemetry.core.errors import StorageError
from site_telemetry.core.worker import BackgroundWorker
from site_telemetry.models.telemetry import SiteSummary, TelemetryRecord
from site_telemetry.services.alert_service import AlertDispatcher, AlertEvaluator
from site_telemetry.services.latest_cache import LatestCache
from site_telemetry.services.summary_service import SummaryAggregator
from site_telemetry.services.validator import RecordValidator
from site_telemetry.storage.telemetry_store import TelemetryStore

logger = logging.getLogger(__name__)


class TelemetryService:
    def __init__(
        self,
        validator: RecordValidator,
        store: TelemetryStore,
        latest_cache: LatestCache,
        aggregator: SummaryAggregator,
        evaluator: AlertEvaluator,
        dispatcher: AlertDispatcher,
        worker: BackgroundWorker,
    ):
        self.validator = validator
        self.store = store
        self.latest_cache = latest_cache
        self.aggregator = aggregator
        self.evaluator = evaluator
        self.dispatcher = dispatcher
        self.worker = worker

    async def ingest(
        self, payload: Any
    ) -> Union[TelemetryRecord, list[TelemetryRecord]]:
        """Validate and persist one record or a batch.

        Success is decided by persistence alone. Cache refresh and alerting
        for newly stored records are queued on the background worker and
        cannot fail or delay the call.
        """
        validated = self.validator.validate(payload)
        records = validated if isinstance(validated, list) else [validated]

        try:
            stored = await self.store.insert_many(records)
        except StorageError as e:
            logger.error(
                "create_failed count=%d devices=%s reason=%s",
                len(records),
                sorted({r.device_id for r in records}),
                e,
            )
            raise StorageError("Failed to create telemetry record(s)") from e

        duplicates = 0
        for record, inserted in stored:
            if not inserted:
                duplicates += 1
                continue
            self.worker.submit(
                f"refresh_latest:{record.device_id}",
                lambda record=record: self.latest_cache.refresh_latest(record),
            )
            self.worker.submit(
                f"alerts:{record.device_id}",
                lambda record=record: self.raise_alerts(record),
            )

        if duplicates:
            logger.info("duplicate_events_skipped count=%d", duplicates)

        persisted = [record for record, _ in stored]
        return persisted if isinstance(validated, list) else persisted[0]

    async def raise_alerts(self, record: TelemetryRecord) -> None:
        for event in self.evaluator.evaluate(record):
            await self.dispatcher.dispatch(event)

    async def get_latest(self, device_id: str) -> TelemetryRecord:
        return await self.latest_cache.get_latest(device_id)

    async def summarize(
        self,
        site_id: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> SiteSummary:
        return await self.aggregator.summarize(site_id, start_time, end_time)
