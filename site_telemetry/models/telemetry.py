from datetime import datetime, timezone
from typing import Annotated, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    field_validator,
)
from pydantic.alias_generators import to_camel

Identifier = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)
]
Reading = Annotated[float, Field(strict=True, allow_inf_nan=False)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Metrics(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    temperature: float
    humidity: float


class TelemetryRecord(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str
    device_id: str
    site_id: str
    timestamp: datetime = Field(
        validation_alias=AliasChoices("timestamp", "ts"),
        serialization_alias="timestamp",
    )
    metrics: Metrics
    event_id: Optional[str] = None


class MetricsIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    temperature: Reading
    humidity: Reading


class TelemetryRecordIn(BaseModel):
    """Incoming reading as posted by a device; unknown fields are rejected."""

    model_config = ConfigDict(alias_generator=to_camel, extra="forbid")

    device_id: Identifier
    site_id: Identifier
    timestamp: datetime = Field(validation_alias=AliasChoices("timestamp", "ts"))
    metrics: MetricsIn
    event_id: Optional[
        Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    ] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def require_iso_text(cls, value):
        # unix numbers would otherwise be coerced
        if not isinstance(value, (str, datetime)):
            raise ValueError("must be an ISO-8601 timestamp")
        return value

    @field_validator("timestamp")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class SiteSummary(CamelModel):
    count: int = 0
    avg_temperature: float = 0.0
    max_temperature: float = 0.0
    avg_humidity: float = 0.0
    max_humidity: float = 0.0
    unique_device_count: int = 0
