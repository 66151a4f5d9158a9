"""Client facades over the delivery engine.

Two modes:

- Client: async. ``await client.send_spans(batch)`` delivers on the caller's
  event loop and returns once the batch reached a terminal state.
- BlockingClient: for synchronous applications. ``send_spans(batch)``
  returns immediately; a background worker delivers queued batches.

Neither mode raises delivery failures to the caller. Failures are logged.
"""

from __future__ import annotations

import asyncio
from types import TracebackType
from typing import TYPE_CHECKING, Any, Self

import httpx
import structlog

from teleship.contracts.enums import TelemetryKind
from teleship.delivery.endpoint import METRIC_API_PATH, TRACE_API_PATH, Endpoint
from teleship.delivery.engine import DeliveryEngine, SleepFunc
from teleship.delivery.queue import DeliveryQueue

if TYPE_CHECKING:
    from teleship.contracts.protocols import Sendable
    from teleship.core.config import ClientConfig
    from teleship.model.metric import MetricBatch
    from teleship.model.span import SpanBatch

logger = structlog.get_logger(__name__)


def resolve_endpoints(config: ClientConfig) -> dict[TelemetryKind, httpx.URL]:
    """Resolve the ingest URL for each telemetry kind.

    Raises:
        InvalidEndpointError: If a configured host or port is malformed
    """
    endpoints = {
        TelemetryKind.SPANS: Endpoint(config.traces_endpoint.host, config.traces_endpoint.port, TRACE_API_PATH),
        TelemetryKind.METRICS: Endpoint(config.metrics_endpoint.host, config.metrics_endpoint.port, METRIC_API_PATH),
    }
    return {kind: endpoint.uri(config.use_tls) for kind, endpoint in endpoints.items()}


def _build_engine(config: ClientConfig, http_client: httpx.AsyncClient, sleep: SleepFunc) -> DeliveryEngine:
    return DeliveryEngine(
        http_client=http_client,
        api_key=config.api_key.get_secret_value(),
        user_agent=config.user_agent(),
        backoff_sequence=config.backoff_sequence(),
        sleep=sleep,
    )


class Client:
    """Async client for the New Relic trace and metric ingest APIs.

    Example:
        async with Client(ClientConfig(api_key="...")) as client:
            await client.send_spans(SpanBatch([Span("id1", "tid1")]))
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the client.

        Args:
            config: Client configuration
            http_client: HTTP client to send requests with. A client with
                the configured timeout is created when omitted.
            sleep: Coroutine function used for backoff waits

        Raises:
            InvalidEndpointError: If a configured endpoint is malformed
        """
        self._config = config
        self._endpoints = resolve_endpoints(config)
        if http_client is None:
            http_client = httpx.AsyncClient(timeout=config.request_timeout_seconds)
        self._engine = _build_engine(config, http_client, sleep)

    @property
    def endpoints(self) -> dict[TelemetryKind, httpx.URL]:
        return dict(self._endpoints)

    async def send_spans(self, batch: SpanBatch) -> None:
        """Deliver a span batch to the Trace API."""
        await self.send(batch, TelemetryKind.SPANS)

    async def send_metrics(self, batch: MetricBatch) -> None:
        """Deliver a metric batch to the Metric API."""
        await self.send(batch, TelemetryKind.METRICS)

    async def send(self, batch: Sendable, kind: TelemetryKind) -> None:
        """Deliver any sendable batch to the endpoint for ``kind``. Never raises."""
        try:
            await self._engine.deliver(batch, self._endpoints[kind])
        except Exception as e:
            logger.error(
                "Batch delivery failed unexpectedly",
                batch=str(batch),
                kind=kind.value,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def aclose(self) -> None:
        await self._engine.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()


class BlockingClient:
    """Queued client for synchronous applications.

    send_spans() and send_metrics() only enqueue the batch. A background
    worker thread delivers queued batches, at most ``blocking_queue_max``
    per drain cycle. At most that many batches wait in the queue; batches
    sent while it is full are dropped.

    Example:
        with BlockingClient(ClientConfig(api_key="...")) as client:
            client.send_spans(batch)
        # leaving the block waits for queued batches to be delivered
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the client and start its delivery worker.

        Args:
            config: Client configuration
            transport: Transport for the worker's HTTP client
            sleep: Coroutine function used for backoff waits

        Raises:
            InvalidEndpointError: If a configured endpoint is malformed
        """
        self._config = config
        self._endpoints = resolve_endpoints(config)
        # Only ever used on the worker's event loop
        http_client = httpx.AsyncClient(timeout=config.request_timeout_seconds, transport=transport)
        engine = _build_engine(config, http_client, sleep)
        self._queue = DeliveryQueue(
            engine.deliver,
            max_per_cycle=config.blocking_queue_max,
            on_close=engine.aclose,
        )
        self._queue.start()

    @property
    def endpoints(self) -> dict[TelemetryKind, httpx.URL]:
        return dict(self._endpoints)

    def send_spans(self, batch: SpanBatch) -> None:
        """Queue a span batch for delivery. Returns immediately."""
        self.send(batch, TelemetryKind.SPANS)

    def send_metrics(self, batch: MetricBatch) -> None:
        """Queue a metric batch for delivery. Returns immediately."""
        self.send(batch, TelemetryKind.METRICS)

    def send(self, batch: Sendable, kind: TelemetryKind) -> None:
        self._queue.submit(batch, self._endpoints[kind])

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop accepting batches and wait for queued deliveries to finish."""
        self._queue.shutdown(timeout=timeout)

    @property
    def health_metrics(self) -> dict[str, Any]:
        return self._queue.health_metrics

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.shutdown()
