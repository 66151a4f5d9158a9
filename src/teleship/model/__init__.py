"""Telemetry data model: attribute values, spans and metrics."""

from teleship.model.attribute import AttributeKind, Attributes, AttributeValue, attributes_to_json
from teleship.model.metric import CountMetric, GaugeMetric, Metric, MetricBatch, SummaryMetric
from teleship.model.span import Span, SpanBatch

__all__ = [
    "AttributeKind",
    "AttributeValue",
    "Attributes",
    "CountMetric",
    "GaugeMetric",
    "Metric",
    "MetricBatch",
    "Span",
    "SpanBatch",
    "SummaryMetric",
    "attributes_to_json",
]
