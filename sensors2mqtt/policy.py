"""Decide whether a new reading is worth publishing."""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .sensors import Reading

DEFAULT_HEARTBEAT_SECONDS = 60.0

BME280_THRESHOLDS = {"temperature": 0.5, "pressure": 1.0, "humidity": 1.0}
ONEWIRE_THRESHOLDS = {"temperature": 1.0}


@dataclass
class SensorState:
    """Last reported value of one logical sensor instance, owned by the poll loop."""

    id: str
    display_name: str
    last_value: Optional[Mapping[str, float]] = None
    last_report_time: Optional[float] = None
    next_due_time: Optional[float] = None

    def mark_reported(self, reading: Reading, heartbeat: float) -> None:
        self.last_value = reading.values
        self.last_report_time = reading.timestamp
        self.next_due_time = reading.timestamp + heartbeat


class ChangePolicy(ABC):
    def __init__(self, heartbeat: float = DEFAULT_HEARTBEAT_SECONDS):
        self.heartbeat = heartbeat

    def should_report(self, state: SensorState, reading: Reading) -> bool:
        if state.last_value is None or state.next_due_time is None:
            return True
        if reading.timestamp > state.next_due_time:
            return True
        return self.changed(state.last_value, reading.values)

    @abstractmethod
    def changed(self, old: Mapping[str, float], new: Mapping[str, float]) -> bool:
        ...


class ThresholdPolicy(ChangePolicy):
    """Report when any tracked field moved by more than its absolute threshold."""

    def __init__(self, thresholds: Dict[str, float], heartbeat: float = DEFAULT_HEARTBEAT_SECONDS):
        super().__init__(heartbeat)
        self.thresholds = dict(thresholds)

    def changed(self, old, new) -> bool:
        for name, threshold in self.thresholds.items():
            if name not in new:
                continue
            if name not in old:
                return True
            if abs(new[name] - old[name]) > threshold:
                return True
        return False


class RatioPolicy(ChangePolicy):
    """Report when a field grew or shrank by at least ``ratio`` times.

    Light levels swing over several orders of magnitude, so an absolute
    delta is meaningless across the range.
    """

    def __init__(self, field: str, ratio: float = 10.0, heartbeat: float = DEFAULT_HEARTBEAT_SECONDS):
        super().__init__(heartbeat)
        self.field = field
        self.ratio = ratio

    def changed(self, old, new) -> bool:
        if self.field not in new:
            return False
        if self.field not in old:
            return True
        previous, current = old[self.field], new[self.field]
        if previous <= 0:
            return current > 0
        upper, lower = previous * self.ratio, previous / self.ratio
        # boundary is inclusive; products like 0.405 * 10 are not exact in binary
        if current > upper or math.isclose(current, upper):
            return True
        return current < lower or math.isclose(current, lower)
