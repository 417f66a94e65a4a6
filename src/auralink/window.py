"""Bounded, time-bucketed multi-series store for charting.

Sensors publish independently and at different rates. The window merges
their readings into one ordered list of slots that all series share:

* readings carrying the same bucket label land in the same slot, the
  latest value per series winning;
* a new label opens a slot pre-filled with every series' previous value
  (forward-fill), so slower sensors show their last known reading rather
  than a gap;
* at most ``capacity`` slots are kept, oldest evicted first.
"""

from __future__ import annotations

import copy
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

DEFAULT_CAPACITY = 20


class SensorSeries(StrEnum):
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    AIR_QUALITY = "air_quality"


def time_label(moment: datetime) -> str:
    """Bucket label at one-second wall-clock resolution (``HH:MM:SS``)."""
    return moment.strftime("%H:%M:%S")


@dataclass
class TimeSlot:
    label: str
    values: dict[SensorSeries, float | None] = field(default_factory=dict)


class TimeSeriesWindow:
    """Sliding window of :class:`TimeSlot` shared by all tracked series."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        series: Iterable[SensorSeries] = tuple(SensorSeries),
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._series = tuple(series)
        self._slots: deque[TimeSlot] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._slots)

    def append(self, key: SensorSeries, value: float, time_label: str) -> None:
        """Record *value* for *key* in the bucket named *time_label*."""
        if key not in self._series:
            raise KeyError(f"Untracked series: {key!r}")

        if not self._slots or self._slots[-1].label != time_label:
            previous = self._slots[-1].values if self._slots else {}
            slot = TimeSlot(
                label=time_label,
                values={series: previous.get(series) for series in self._series},
            )
            self._slots.append(slot)

        self._slots[-1].values[key] = value

        if len(self._slots) > self._capacity:
            self._slots.popleft()

    @property
    def labels(self) -> list[str]:
        return [slot.label for slot in self._slots]

    def slots(self) -> list[TimeSlot]:
        """Detached copies of the current slots, oldest first."""
        return copy.deepcopy(list(self._slots))

    def series(self, key: SensorSeries) -> list[float | None]:
        """Values of one series aligned with :attr:`labels`."""
        return [slot.values.get(key) for slot in self._slots]

    def latest(self, key: SensorSeries) -> float | None:
        if not self._slots:
            return None
        return self._slots[-1].values.get(key)

    def max_value(self, key: SensorSeries) -> float | None:
        """Largest recorded value of *key* in the window; ``None`` when empty."""
        values = [value for value in self.series(key) if value is not None]
        return max(values) if values else None

    def clear(self) -> None:
        self._slots.clear()
