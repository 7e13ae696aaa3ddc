import uuid
from typing import Any, Union

from pydantic import TypeAdapter, ValidationError

from site_telemetry.config.settings import Settings
from site_telemetry.core.errors import InvalidRecord
from site_telemetry.models.telemetry import Metrics, TelemetryRecord, TelemetryRecordIn

batch_adapter = TypeAdapter(list[TelemetryRecordIn])


def error_path(loc: tuple) -> str:
    """Render a pydantic error location as ``[2].metrics.humidity``."""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path or "body"


class RecordValidator:
    """Turns raw JSON payloads into normalized ``TelemetryRecord`` objects.

    A batch is accepted only if every element is valid; the first failure
    raises ``InvalidRecord`` with the field path, e.g. ``[2].metrics.humidity``.
    """

    def __init__(self, settings: Settings):
        self.max_batch_size = settings.telemetry_batch_max_size

    def validate(
        self, payload: Any
    ) -> Union[TelemetryRecord, list[TelemetryRecord]]:
        if isinstance(payload, list):
            return self.validate_batch(payload)
        return self.to_record(self._parse(TelemetryRecordIn.model_validate, payload))

    def validate_batch(self, payload: list) -> list[TelemetryRecord]:
        if not payload:
            raise InvalidRecord("body", "batch must contain at least one record")
        if len(payload) > self.max_batch_size:
            raise InvalidRecord(
                "body", f"batch exceeds {self.max_batch_size} records"
            )

        return [
            self.to_record(item)
            for item in self._parse(batch_adapter.validate_python, payload)
        ]

    def _parse(self, parse, payload):
        try:
            return parse(payload)
        except ValidationError as e:
            first = e.errors()[0]
            raise InvalidRecord(error_path(first["loc"]), first["msg"]) from None

    @staticmethod
    def to_record(incoming: TelemetryRecordIn) -> TelemetryRecord:
        return TelemetryRecord(
            id=uuid.uuid4().hex,
            device_id=incoming.device_id,
            site_id=incoming.site_id,
            timestamp=incoming.timestamp,
            metrics=Metrics(
                temperature=incoming.metrics.temperature,
                humidity=incoming.metrics.humidity,
            ),
            event_id=incoming.event_id,
        )
