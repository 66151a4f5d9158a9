"""Dimensional metrics and metric batches.

Three metric types are supported by the Metric API:

- gauge: a point-in-time value
- count: a value accumulated over an interval
- summary: count/sum/min/max accumulated over an interval

Wire form of a metric:

    {"name": "...", "type": "count", "value": 3.0, "timestamp": 1000,
     "interval.ms": 100, "attributes": {...}}
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, ClassVar

from teleship.contracts.errors import MetricValidationError
from teleship.model.attribute import Attributes, AttributeValue, attributes_to_json
from teleship.model.batch import TelemetryBatch, now_as_millis


@dataclass(frozen=True, slots=True)
class SummaryValue:
    """Aggregated value of a summary metric."""

    count: int
    sum: float
    min: float
    max: float

    def to_json(self) -> dict[str, Any]:
        return {"count": self.count, "sum": self.sum, "min": self.min, "max": self.max}


@dataclass
class Metric:
    """Base class for all metric types.

    Subclasses set ``metric_type`` and declare whether an interval is
    required.
    """

    metric_type: ClassVar[str]
    requires_interval: ClassVar[bool] = False

    name: str
    timestamp: int | None = None
    attributes: Attributes = field(default_factory=dict)

    def set_timestamp(self, timestamp: int) -> Metric:
        self.timestamp = timestamp
        return self

    def set_attribute(self, key: str, value: Any) -> Metric:
        self.attributes[key] = AttributeValue.from_python(value)
        return self

    def _value_json(self) -> Any:
        raise NotImplementedError

    def _has_value(self) -> bool:
        raise NotImplementedError

    def _interval(self) -> int | None:
        return None

    def validate(self) -> None:
        """Check required fields, stamping the current time if unset.

        Raises:
            MetricValidationError: If the value, or the interval for interval
                metrics, is missing
        """
        if self.timestamp is None:
            self.timestamp = now_as_millis()
        if not self._has_value():
            raise MetricValidationError(self.name, "metric requires a value")
        if self.requires_interval and self._interval() is None:
            raise MetricValidationError(self.name, "metric requires an interval")

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "type": self.metric_type,
            "value": self._value_json(),
            "timestamp": self.timestamp,
        }
        if self.requires_interval:
            data["interval.ms"] = self._interval()
        if self.attributes:
            data["attributes"] = attributes_to_json(self.attributes)
        return data


@dataclass
class GaugeMetric(Metric):
    """A single value at a point in time."""

    metric_type: ClassVar[str] = "gauge"

    value: float | None = None

    def set_value(self, value: float) -> GaugeMetric:
        self.value = float(value)
        return self

    def _has_value(self) -> bool:
        return self.value is not None

    def _value_json(self) -> Any:
        return self.value


@dataclass
class CountMetric(Metric):
    """The number of occurrences of an event over an interval."""

    metric_type: ClassVar[str] = "count"
    requires_interval: ClassVar[bool] = True

    value: float | None = None
    interval_ms: int | None = None

    def set_value(self, value: float) -> CountMetric:
        self.value = float(value)
        return self

    def set_interval(self, interval_ms: int) -> CountMetric:
        self.interval_ms = interval_ms
        return self

    def _has_value(self) -> bool:
        return self.value is not None

    def _value_json(self) -> Any:
        return self.value

    def _interval(self) -> int | None:
        return self.interval_ms


@dataclass
class SummaryMetric(Metric):
    """Count, sum, minimum and maximum of a value over an interval."""

    metric_type: ClassVar[str] = "summary"
    requires_interval: ClassVar[bool] = True

    value: SummaryValue | None = None
    interval_ms: int | None = None

    def set_value(self, count: int, sum: float, min: float, max: float) -> SummaryMetric:
        self.value = SummaryValue(count=count, sum=float(sum), min=float(min), max=float(max))
        return self

    def set_interval(self, interval_ms: int) -> SummaryMetric:
        self.interval_ms = interval_ms
        return self

    def _has_value(self) -> bool:
        return self.value is not None

    def _value_json(self) -> Any:
        return self.value.to_json() if self.value is not None else None

    def _interval(self) -> int | None:
        return self.interval_ms


class MetricBatch(TelemetryBatch[Metric]):
    """An unordered batch of metrics of any type plus common attributes.

    Example:
        batch = MetricBatch()
        batch.record(GaugeMetric("temperature").set_value(21.5))
        batch.record(CountMetric("requests").set_value(42).set_interval(10_000))
        batch.add_attribute("host", "web-1")
    """

    _records_key = "metrics"

    def __init__(self, metrics: Iterable[Metric] = (), attributes: Attributes | None = None) -> None:
        super().__init__([], attributes)
        for metric in metrics:
            self.record(metric)

    @property
    def metrics(self) -> list[Metric]:
        return self._records

    def record(self, metric: Metric) -> None:
        """Validate a metric and add it to the batch.

        Raises:
            MetricValidationError: If the metric is missing required fields.
                The metric is not added.
        """
        metric.validate()
        self._records.append(metric)

    def _record_to_json(self, record: Metric) -> dict[str, Any]:
        return record.to_json()

    def __str__(self) -> str:
        return f"<MetricBatch, {len(self)} data points>"
