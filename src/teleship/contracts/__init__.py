"""Shared contracts: enums, the Sendable protocol and the exception hierarchy.

These types cross the boundary between the data model and the delivery
engine, so they live in a leaf package with no dependencies on either.
"""

from teleship.contracts.enums import AttributeKind, DeliveryState, TelemetryKind
from teleship.contracts.errors import (
    ConfigurationError,
    EncodingError,
    InvalidEndpointError,
    MetricValidationError,
    TeleshipError,
)
from teleship.contracts.protocols import Sendable

__all__ = [
    "AttributeKind",
    "ConfigurationError",
    "DeliveryState",
    "EncodingError",
    "InvalidEndpointError",
    "MetricValidationError",
    "Sendable",
    "TelemetryKind",
    "TeleshipError",
]
