"""Delivery subsystem: endpoint resolution, backoff, the send/retry/split
engine and the queue used by the blocking client."""

from teleship.delivery.backoff import MAX_BACKOFF_SECONDS, compute_backoff_sequence, wait_backoff_sequence
from teleship.delivery.endpoint import METRIC_API_PATH, TRACE_API_PATH, Endpoint, resolve_endpoint
from teleship.delivery.engine import DeliveryEngine, DeliveryOutcome, classify_response, gzip_compress, parse_retry_after
from teleship.delivery.queue import DeliveryQueue, PendingDelivery

__all__ = [
    "MAX_BACKOFF_SECONDS",
    "METRIC_API_PATH",
    "TRACE_API_PATH",
    "DeliveryEngine",
    "DeliveryOutcome",
    "DeliveryQueue",
    "Endpoint",
    "PendingDelivery",
    "classify_response",
    "compute_backoff_sequence",
    "gzip_compress",
    "parse_retry_after",
    "resolve_endpoint",
    "wait_backoff_sequence",
]
