"""Inbound message dispatch into the window and latest-value slots."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from auralink._redact import trim_payload
from auralink.config import TopicMap
from auralink.window import SensorSeries, TimeSeriesWindow, time_label

_logger = logging.getLogger(__name__)

NO_READING = "--"

# Leading decimal number; trailing units such as "21.5C" are ignored.
_LEADING_NUMBER = re.compile(r"\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


class AuxiliaryLatest(BaseModel):
    """Last payload seen on each free-text topic. No history is kept."""

    model_config = ConfigDict(validate_assignment=True)

    display_message: str = "Waiting for display message..."
    email_summary: str = "No email summary received yet."
    led_indicator: str = "#000000"


class DashboardSnapshot(BaseModel):
    """Read-only view handed to the presentation layer on each render tick."""

    model_config = ConfigDict(frozen=True)

    labels: list[str] = Field(default_factory=list)
    series: dict[SensorSeries, list[float | None]] = Field(default_factory=dict)
    readings: dict[SensorSeries, str] = Field(default_factory=dict)
    maxima: dict[SensorSeries, float | None] = Field(default_factory=dict)
    auxiliary: AuxiliaryLatest = Field(default_factory=AuxiliaryLatest)
    connection_state: str | None = None
    stable: bool = False

    @property
    def data_points(self) -> int:
        return len(self.labels)


def _parse_reading(payload: str) -> float | None:
    match = _LEADING_NUMBER.match(payload)
    if match is None:
        return None
    value = float(match.group())
    if not math.isfinite(value):
        return None
    return value


class MessageRouter:
    """Route ``(topic, payload)`` pairs in delivery order."""

    def __init__(
        self,
        window: TimeSeriesWindow,
        topics: TopicMap | None = None,
        *,
        label_clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        topics = topics or TopicMap()
        self._window = window
        self._label_clock = label_clock
        self._series_topics: dict[str, SensorSeries] = {
            topics.temperature: SensorSeries.TEMPERATURE,
            topics.humidity: SensorSeries.HUMIDITY,
            topics.air_quality: SensorSeries.AIR_QUALITY,
        }
        self._aux_topics: dict[str, str] = {
            topics.display: "display_message",
            topics.email_summary: "email_summary",
            topics.led: "led_indicator",
        }
        self._readings: dict[SensorSeries, str] = {series: NO_READING for series in self._series_topics.values()}
        self.auxiliary = AuxiliaryLatest()

    @property
    def window(self) -> TimeSeriesWindow:
        return self._window

    @property
    def readings(self) -> dict[SensorSeries, str]:
        """Latest raw payload per sensor, as shown on the sensor cards."""
        return dict(self._readings)

    def route(self, topic: str, payload: str) -> None:
        _logger.debug("Message topic=%s payload=%s", topic, trim_payload(payload))

        series = self._series_topics.get(topic)
        if series is not None:
            self._readings[series] = payload
            value = _parse_reading(payload)
            if value is None:
                _logger.debug("Skipping non-numeric reading topic=%s", topic)
                return
            self._window.append(series, value, time_label(self._label_clock()))
            return

        field_name = self._aux_topics.get(topic)
        if field_name is not None:
            setattr(self.auxiliary, field_name, payload)

    def snapshot(self, *, connection_state: str | None = None, stable: bool = False) -> DashboardSnapshot:
        window = self._window
        tracked = tuple(self._series_topics.values())
        return DashboardSnapshot(
            labels=window.labels,
            series={series: window.series(series) for series in tracked},
            readings=self.readings,
            maxima={series: window.max_value(series) for series in tracked},
            auxiliary=self.auxiliary.model_copy(),
            connection_state=connection_state,
            stable=stable,
        )
