from datetime import datetime
from enum import Enum

from site_telemetry.models.telemetry import CamelModel


class AlertReason(str, Enum):
    HIGH_TEMPERATURE = "HighTemperature"
    HIGH_HUMIDITY = "HighHumidity"


class AlertEvent(CamelModel):
    device_id: str
    site_id: str
    timestamp: datetime
    reason: AlertReason
    value: float
