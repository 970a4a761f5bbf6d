"""Sensor package exposing readings and shared helpers."""

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional


class SensorError(Exception):
    """Raised when a sensor fails to provide a valid reading."""


@dataclass(frozen=True)
class Reading:
    """One immutable sample of named values captured from a sensor."""

    sensor_id: str
    values: Mapping[str, float]
    timestamp: float = field(default_factory=time.monotonic)

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def get(self, name: str) -> Optional[float]:
        return self.values.get(name)

    def as_payload(self) -> dict:
        return dict(self.values)


__all__ = ["SensorError", "Reading", "BME280Sensor", "MAX44009Sensor", "OneWireBus"]

from .bme280 import BME280Sensor  # noqa: E402  # isort:skip
from .max44009 import MAX44009Sensor  # noqa: E402  # isort:skip
from .onewire import OneWireBus  # noqa: E402  # isort:skip
