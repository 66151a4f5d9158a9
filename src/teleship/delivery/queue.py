"""DeliveryQueue: hands batches from application threads to a delivery worker.

The queue decouples producers (application threads calling submit) from the
network I/O of the delivery engine:

1. submit() enqueues a batch and returns immediately; a batch submitted
   while max_per_cycle batches are already waiting is dropped
2. A single worker thread blocks until at least one batch is queued
3. The worker drains everything queued at that moment into one cycle
4. Batches beyond the per-cycle maximum, refilled by producers while
   draining, are dropped (backpressure)
5. The retained batches are delivered concurrently; the cycle ends when
   every delivery reached a terminal state

Thread Safety:
    submit() may be called from any thread. queue.Queue handles concurrent
    producers. Counters written by both producers and the worker are
    protected by _stats_lock. The asyncio event loop is created, used and
    closed by the worker thread only.
"""

from __future__ import annotations

import asyncio
import atexit
import queue
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    import httpx

    from teleship.contracts.protocols import Sendable

logger = structlog.get_logger(__name__)

DeliverFunc = Callable[["Sendable", "httpx.URL"], Awaitable[None]]
CloseFunc = Callable[[], Awaitable[None]]

# Upper bound on waiting for the worker thread to come up
_READY_TIMEOUT_SECONDS = 5.0

# Upper bound on flushing queued batches when the interpreter exits
_EXIT_FLUSH_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True, slots=True)
class PendingDelivery:
    """A batch waiting in the queue, with the endpoint it is bound for."""

    batch: Sendable
    endpoint: httpx.URL


class DeliveryQueue:
    """Multi-producer, single-consumer delivery queue with a worker thread.

    The worker owns a private asyncio event loop. Each drain cycle runs to
    completion on that loop, so backoff waits occupy the worker thread and
    the next cycle starts only after the previous one finished.

    The queue holds at most max_per_cycle batches. Batches submitted while
    it is full are dropped at once, so producers never block and memory
    stays bounded while a cycle is slow.

    Example:
        >>> dq = DeliveryQueue(engine.deliver, max_per_cycle=100, on_close=engine.aclose)
        >>> dq.start()
        >>> dq.submit(batch, endpoint)
        >>> dq.shutdown()
    """

    # Aggregate logging every _LOG_INTERVAL submit-time drops
    _LOG_INTERVAL = 100

    def __init__(
        self,
        deliver: DeliverFunc,
        *,
        max_per_cycle: int,
        on_close: CloseFunc | None = None,
        name: str = "teleship-delivery",
    ) -> None:
        """Initialize the queue. The worker is not running until start().

        Args:
            deliver: Coroutine function delivering one batch to one endpoint.
                Expected not to raise; exceptions are logged per batch.
            max_per_cycle: Maximum batches delivered per drain cycle
            on_close: Coroutine function run on the worker loop before it
                closes, e.g. to close the HTTP client bound to that loop
            name: Worker thread name
        """
        if max_per_cycle < 1:
            raise ValueError(f"max_per_cycle must be >= 1, got {max_per_cycle}")

        self._deliver = deliver
        self._max_per_cycle = max_per_cycle
        self._on_close = on_close

        # Health metrics
        self._batches_submitted = 0
        self._batches_dropped = 0
        self._cycles_completed = 0
        self._last_logged_drop_count = 0

        # Thread coordination
        self._shutdown_event = threading.Event()
        self._worker_ready = threading.Event()
        self._stats_lock = threading.Lock()

        self._queue: queue.Queue[PendingDelivery | None] = queue.Queue(maxsize=max_per_cycle)

        # Daemon so a forgotten shutdown() never blocks interpreter exit;
        # the atexit hook registered in start() flushes queued batches first
        self._worker = threading.Thread(target=self._run, name=name, daemon=True)
        self._started = False

    def start(self) -> None:
        """Start the worker thread. Batches submitted earlier wait in the queue.

        Registers an exit hook that flushes queued batches if shutdown() is
        never called. A no-op once shutdown() has been called.
        """
        if self._started or self._shutdown_event.is_set():
            return
        self._started = True
        self._worker.start()
        atexit.register(self._shutdown_at_exit)
        # Wait for the worker to be ready (prevents startup race)
        self._worker_ready.wait(timeout=_READY_TIMEOUT_SECONDS)

    @property
    def is_running(self) -> bool:
        return self._worker.is_alive()

    def submit(self, batch: Sendable, endpoint: httpx.URL) -> None:
        """Queue a batch for delivery. Never blocks and never raises.

        The batch is dropped when the queue is full. A no-op once
        shutdown() has been called.
        """
        if self._shutdown_event.is_set():
            logger.debug("Delivery queue is shut down, ignoring batch", batch=str(batch))
            return

        try:
            self._queue.put_nowait(PendingDelivery(batch, endpoint))
        except queue.Full:
            with self._stats_lock:
                self._batches_dropped += 1
                self._log_drops_if_needed()
            return

        with self._stats_lock:
            self._batches_submitted += 1

    def _log_drops_if_needed(self) -> None:
        """Log the first submit-time drop, then one aggregate per _LOG_INTERVAL.

        Caller must hold _stats_lock.
        """
        since_last_log = self._batches_dropped - self._last_logged_drop_count
        if self._last_logged_drop_count == 0 or since_last_log >= self._LOG_INTERVAL:
            logger.warning(
                "Delivery queue full, dropping batches",
                dropped_since_last_log=since_last_log,
                dropped_total=self._batches_dropped,
                queue_capacity=self._max_per_cycle,
            )
            self._last_logged_drop_count = self._batches_dropped

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop accepting batches and wait for the worker to exit.

        Batches queued before shutdown are still delivered. Deliveries in
        progress are not cancelled.

        Args:
            timeout: Maximum seconds to wait for the worker; None waits
                until it exits
        """
        if self._shutdown_event.is_set():
            return
        self._shutdown_event.set()

        if not self._started:
            return
        atexit.unregister(self._shutdown_at_exit)

        # Blocking put: the worker frees a slot once its current cycle ends
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            logger.warning(
                "Delivery worker did not accept shutdown before timeout",
                timeout_seconds=timeout,
                queue_depth=self._queue.qsize(),
            )
            return

        self._worker.join(timeout=timeout)
        if self._worker.is_alive():
            logger.warning(
                "Delivery worker did not exit before timeout",
                timeout_seconds=timeout,
                queue_depth=self._queue.qsize(),
            )

    def _shutdown_at_exit(self) -> None:
        self.shutdown(timeout=_EXIT_FLUSH_TIMEOUT_SECONDS)

    @property
    def health_metrics(self) -> dict[str, Any]:
        """Snapshot of queue health for monitoring.

        Returns:
            Dict with batches_submitted, batches_dropped, cycles_completed,
            queue_depth and queue_max_per_cycle
        """
        with self._stats_lock:
            return {
                "batches_submitted": self._batches_submitted,
                "batches_dropped": self._batches_dropped,
                "cycles_completed": self._cycles_completed,
                "queue_depth": self._queue.qsize(),
                "queue_max_per_cycle": self._max_per_cycle,
            }

    def _run(self) -> None:
        """Worker thread: wait, drain, apply overflow policy, deliver; repeat.

        Exits after the cycle in which the shutdown sentinel (None) is seen.
        """
        loop = asyncio.new_event_loop()
        self._worker_ready.set()
        try:
            closing = False
            while not closing:
                first = self._queue.get()
                if first is None:
                    break
                pending = [first]
                closing = self._drain_into(pending)
                self._run_cycle(loop, self._apply_overflow_policy(pending))
        finally:
            self._close_loop(loop)

    def _drain_into(self, pending: list[PendingDelivery]) -> bool:
        """Move everything currently queued into pending.

        Returns:
            True if the shutdown sentinel was reached
        """
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return False
            if item is None:
                return True
            pending.append(item)

    def _apply_overflow_policy(self, pending: list[PendingDelivery]) -> list[PendingDelivery]:
        """Keep the first max_per_cycle batches in submission order."""
        excess = len(pending) - self._max_per_cycle
        if excess <= 0:
            return pending

        with self._stats_lock:
            self._batches_dropped += excess
            dropped_total = self._batches_dropped
        logger.warning(
            "Delivery queue overflow, dropping batches",
            dropped=excess,
            retained=self._max_per_cycle,
            dropped_total=dropped_total,
        )
        return pending[: self._max_per_cycle]

    def _run_cycle(self, loop: asyncio.AbstractEventLoop, pending: list[PendingDelivery]) -> None:
        try:
            loop.run_until_complete(self._deliver_all(pending))
        except Exception as e:
            # The worker must survive anything a cycle throws
            logger.error("Delivery cycle failed unexpectedly", error=str(e), error_type=type(e).__name__)
        with self._stats_lock:
            self._cycles_completed += 1

    async def _deliver_all(self, pending: list[PendingDelivery]) -> None:
        results = await asyncio.gather(
            *(self._deliver(item.batch, item.endpoint) for item in pending),
            return_exceptions=True,
        )
        for item, result in zip(pending, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Batch delivery failed unexpectedly",
                    batch=str(item.batch),
                    batch_id=item.batch.uuid,
                    error=str(result),
                    error_type=type(result).__name__,
                )

    def _close_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            if self._on_close is not None:
                loop.run_until_complete(self._on_close())
        except Exception as e:
            logger.warning("Error closing delivery worker resources", error=str(e))
        finally:
            loop.close()
