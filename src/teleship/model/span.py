"""Distributed tracing spans and span batches.

Wire form of a span:

    {"id": "...", "trace.id": "...", "timestamp": 1000, "attributes": {...}}

Well-known span fields (name, duration, parent id, service name) travel as
attributes, as the Trace API expects.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from teleship.contracts.enums import AttributeKind
from teleship.model.attribute import Attributes, AttributeValue, attributes_to_json
from teleship.model.batch import TelemetryBatch, now_as_millis


@dataclass
class Span:
    """A distributed tracing span.

    Setters return the span so calls can be chained:

        span = Span("id1", "tid1", 1000).set_name("GET /").set_service_name("web")

    Attributes:
        id: Unique identifier for this span
        trace_id: Identifier shared by all spans of one trace
        timestamp: Start time in epoch milliseconds; filled in on record()
            when left unset
        attributes: Span attributes, including the well-known fields
    """

    id: str
    trace_id: str
    timestamp: int | None = None
    attributes: Attributes = field(default_factory=dict)

    def set_name(self, name: str) -> Span:
        return self.set_attribute("name", name)

    def set_duration(self, duration: timedelta | float) -> Span:
        """Set the span duration, given as a timedelta or in seconds.

        Stored as whole milliseconds in the ``duration.ms`` attribute.
        """
        if isinstance(duration, timedelta):
            millis = duration // timedelta(milliseconds=1)
        else:
            millis = int(duration * 1000)
        if millis < 0:
            raise ValueError(f"Span duration must not be negative, got {duration!r}")
        self.attributes["duration.ms"] = AttributeValue(AttributeKind.UINT128, millis)
        return self

    def set_parent_id(self, parent_id: str) -> Span:
        return self.set_attribute("parent.id", parent_id)

    def set_service_name(self, service_name: str) -> Span:
        return self.set_attribute("service.name", service_name)

    def set_attribute(self, key: str, value: Any) -> Span:
        self.attributes[key] = AttributeValue.from_python(value)
        return self

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "trace.id": self.trace_id,
            "timestamp": self.timestamp,
        }
        if self.attributes:
            data["attributes"] = attributes_to_json(self.attributes)
        return data


class SpanBatch(TelemetryBatch[Span]):
    """An ordered batch of spans plus common attributes.

    Example:
        batch = SpanBatch()
        batch.record(Span("id1", "tid1", 1000))
        batch.add_attribute("host", "web-1")
        await client.send_spans(batch)
    """

    _records_key = "spans"

    def __init__(self, spans: Iterable[Span] = (), attributes: Attributes | None = None) -> None:
        super().__init__([], attributes)
        for span in spans:
            self.record(span)

    @property
    def spans(self) -> list[Span]:
        return self._records

    def record(self, span: Span) -> None:
        """Add a span to the batch, stamping it with the current time if unset."""
        if span.timestamp is None:
            span.timestamp = now_as_millis()
        self._records.append(span)

    def _record_to_json(self, record: Span) -> dict[str, Any]:
        return record.to_json()

    def __str__(self) -> str:
        return f"<SpanBatch, {len(self)} spans>"
