import logging
from typing import Optional

import httpx

from site_telemetry.config.settings import Settings
from site_telemetry.core.errors import DispatchError
from site_telemetry.models.alert import AlertEvent, AlertReason
from site_telemetry.models.telemetry import TelemetryRecord

logger = logging.getLogger(__name__)


class AlertEvaluator:
    def __init__(self, settings: Settings):
        self.temperature_threshold = settings.temperature_alert_threshold
        self.humidity_threshold = settings.humidity_alert_threshold

    def evaluate(self, record: TelemetryRecord) -> list[AlertEvent]:
        alerts = []

        if record.metrics.temperature > self.temperature_threshold:
            alerts.append(
                self._event(record, AlertReason.HIGH_TEMPERATURE, record.metrics.temperature)
            )

        if record.metrics.humidity > self.humidity_threshold:
            alerts.append(
                self._event(record, AlertReason.HIGH_HUMIDITY, record.metrics.humidity)
            )

        return alerts

    def _event(
        self, record: TelemetryRecord, reason: AlertReason, value: float
    ) -> AlertEvent:
        return AlertEvent(
            device_id=record.device_id,
            site_id=record.site_id,
            timestamp=record.timestamp,
            reason=reason,
            value=value,
        )


class AlertDispatcher:
    """Posts alert events to the configured webhook.

    Delivery is best-effort: one attempt per event, failures are logged and
    reported through the return value, never raised.
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.webhook_url = settings.alert_webhook_url
        self.client = client or httpx.AsyncClient(
            timeout=settings.alert_webhook_timeout_seconds
        )
        self.sent_count = 0
        self.failed_count = 0

    async def dispatch(self, event: AlertEvent) -> bool:
        if not self.webhook_url:
            return False

        try:
            await self._post(event)
        except DispatchError as e:
            self.failed_count += 1
            logger.error(
                "alert_failed device=%s site=%s ts=%s reason=%s error=%s",
                event.device_id,
                event.site_id,
                event.timestamp.isoformat(),
                event.reason.value,
                e,
            )
            return False

        self.sent_count += 1
        logger.info(
            "alert_sent device=%s site=%s reason=%s value=%s",
            event.device_id,
            event.site_id,
            event.reason.value,
            event.value,
        )
        return True

    async def _post(self, event: AlertEvent) -> None:
        try:
            response = await self.client.post(
                self.webhook_url, json=event.model_dump(mode="json", by_alias=True)
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise DispatchError("Request timed out") from e
        except httpx.HTTPStatusError as e:
            raise DispatchError(
                f"Webhook responded {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise DispatchError(str(e) or e.__class__.__name__) from e

    async def close(self) -> None:
        await self.client.aclose()
