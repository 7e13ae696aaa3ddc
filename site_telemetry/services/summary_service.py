import logging
from datetime import datetime
from typing import Optional

from site_telemetry.core.errors import BadRequest
from site_telemetry.models.telemetry import SiteSummary, TelemetryRecord
from site_telemetry.storage.telemetry_store import TelemetryStore

logger = logging.getLogger(__name__)


class SummaryAggregator:
    def __init__(self, store: TelemetryStore):
        self.store = store

    async def summarize(
        self,
        site_id: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> SiteSummary:
        if start_time and end_time and start_time > end_time:
            raise BadRequest("Starting Date must be before the Ending Date")

        records = await self.store.find_by_site(site_id, start_time, end_time)
        summary = self.aggregate(records)

        if summary.count == 0:
            logger.info(
                "summary_no_data site=%s from=%s to=%s", site_id, start_time, end_time
            )
        else:
            logger.info(
                "summary_generated site=%s from=%s to=%s count=%d devices=%d",
                site_id,
                start_time,
                end_time,
                summary.count,
                summary.unique_device_count,
            )
        return summary

    @staticmethod
    def aggregate(records: list[TelemetryRecord]) -> SiteSummary:
        if not records:
            return SiteSummary()

        temperatures = [r.metrics.temperature for r in records]
        humidities = [r.metrics.humidity for r in records]

        return SiteSummary(
            count=len(records),
            avg_temperature=sum(temperatures) / len(temperatures),
            max_temperature=max(temperatures),
            avg_humidity=sum(humidities) / len(humidities),
            max_humidity=max(humidities),
            unique_device_count=len({r.device_id for r in records}),
        )
