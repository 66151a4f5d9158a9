"""Status values and kinds used across subsystem boundaries."""

from enum import StrEnum


class AttributeKind(StrEnum):
    """Variant tag of an attribute value.

    The tag is never written to the wire; attribute values serialize as
    plain JSON scalars.
    """

    INT = "int"
    UINT = "uint"
    INT128 = "int128"
    UINT128 = "uint128"
    STR = "str"
    FLOAT = "float"
    BOOL = "bool"


class DeliveryState(StrEnum):
    """Decision taken after one delivery attempt."""

    DONE = "done"
    RETRY = "retry"
    SPLIT = "split"


class TelemetryKind(StrEnum):
    """Telemetry data types with a dedicated ingest endpoint."""

    SPANS = "spans"
    METRICS = "metrics"
