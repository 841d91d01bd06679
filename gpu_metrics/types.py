# gpu_metrics/types.py
"""Wire contract shared by the collector and the ingestion service.

Both sides import these models; nothing else defines the payload shape.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer

# Go-style zero instant; some senders still emit it instead of omitting the field
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

# Zero means "not reported" for these, so they are left off the wire
_OMIT_WHEN_ZERO = ("temperature_celsius", "power_draw_watts")


class GPUMetric(BaseModel):
    """One accelerator snapshot, as reported by one nvidia-smi row."""

    # python callers use field names; the wire only ever uses aliases (see from_json)
    model_config = ConfigDict(strict=True, validate_by_name=True)

    index: int = Field(0, alias="gpu_index")
    utilization_percent: int = Field(0, alias="gpu_utilization_percent")
    memory_used_mb: int = Field(0, alias="gpu_memory_used_mb")
    memory_total_mb: int = Field(0, alias="gpu_memory_total_mb")
    temperature_celsius: int = 0
    power_draw_watts: int = 0

    @model_serializer(mode="wrap")
    def omit_unset_optionals(self, handler):
        data = handler(self)
        for key in _OMIT_WHEN_ZERO:
            if data.get(key) == 0:
                data.pop(key)
        return data


class MetricsPayload(BaseModel):
    """Result of one collection cycle."""

    model_config = ConfigDict(strict=True)

    instance_id: str = ""
    timestamp: Optional[datetime] = None
    gpus: List[GPUMetric] = Field(default_factory=list)

    @field_validator("timestamp", mode="before")
    @classmethod
    def timestamp_is_rfc3339(cls, value):
        if value is None or isinstance(value, (str, datetime)):
            return value
        raise ValueError("timestamp must be an RFC3339 string")

    @field_validator("timestamp")
    @classmethod
    def timestamp_has_zone(cls, value):
        if value is None:
            return value
        if value.tzinfo is None:
            raise ValueError("timestamp must carry a UTC offset")
        try:
            value.astimezone(timezone.utc)
        except OverflowError as exc:
            raise ValueError("timestamp out of range") from exc
        return value

    def has_zero_timestamp(self) -> bool:
        if self.timestamp is None:
            return True
        ts = self.timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts == ZERO_TIME

    def normalized_timestamp(self) -> datetime:
        """Timestamp in UTC, or now if the sender left it zero."""
        if self.has_zero_timestamp():
            return datetime.now(timezone.utc)
        ts = self.timestamp
        if ts.tzinfo is None:
            return ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: bytes | str) -> "MetricsPayload":
        return cls.model_validate_json(raw, by_alias=True, by_name=False)


__all__ = ["GPUMetric", "MetricsPayload", "ZERO_TIME"]
