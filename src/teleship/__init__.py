"""
Teleship: delivery client for New Relic telemetry ingest APIs.

Batches of spans and metrics are serialized to the New Relic JSON wire
format, gzip-compressed and posted to the ingest endpoints with retry,
backoff and payload splitting.
"""

__version__ = "0.4.0"

from teleship.client import BlockingClient, Client
from teleship.contracts.errors import (
    ConfigurationError,
    EncodingError,
    InvalidEndpointError,
    MetricValidationError,
    TeleshipError,
)
from teleship.core.config import ClientConfig, EndpointSettings, ProductInfo, load_config
from teleship.model.attribute import AttributeKind, AttributeValue
from teleship.model.metric import CountMetric, GaugeMetric, MetricBatch, SummaryMetric
from teleship.model.span import Span, SpanBatch

__all__ = [
    "AttributeKind",
    "AttributeValue",
    "BlockingClient",
    "Client",
    "ClientConfig",
    "ConfigurationError",
    "CountMetric",
    "EncodingError",
    "EndpointSettings",
    "GaugeMetric",
    "InvalidEndpointError",
    "MetricBatch",
    "MetricValidationError",
    "ProductInfo",
    "Span",
    "SpanBatch",
    "SummaryMetric",
    "TeleshipError",
    "__version__",
    "load_config",
]
