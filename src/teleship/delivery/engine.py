"""DeliveryEngine: send/retry/split state machine for one batch.

Each attempt encodes the batch, posts it and classifies the response:

- Done: success, or a response that is not worth retrying
- Retry: wait (backoff sequence, or Retry-After) and try again
- Split: payload too large; halve the batch and deliver both halves

Retries run under tenacity with a stop after ``len(backoff_sequence) + 1``
attempts. Local failures (encoding, transport) are terminal for the batch.

Nothing on this path raises to the caller for an expected failure: the batch
is logged and dropped. Telemetry must never break the application it
observes.
"""

from __future__ import annotations

import asyncio
import gzip
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
import structlog
from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_attempt

from teleship.contracts.enums import DeliveryState
from teleship.contracts.errors import EncodingError
from teleship.delivery.backoff import wait_backoff_sequence

if TYPE_CHECKING:
    from tenacity import RetryCallState

    from teleship.contracts.protocols import Sendable

logger = structlog.get_logger(__name__)

# Status codes that indicate a request the backend will never accept
NON_RETRYABLE_STATUS_CODES = frozenset({400, 401, 403, 404, 405, 409, 410, 411})
PAYLOAD_TOO_LARGE = 413
TOO_MANY_REQUESTS = 429

# zlib's default trade-off between speed and ratio
GZIP_COMPRESSION_LEVEL = 6

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    """Decision taken after one attempt.

    Attributes:
        state: Done, Retry or Split
        delay: Explicit wait before the next attempt (Retry only); None
            means the backoff sequence decides
        reason: Short description for logging
    """

    state: DeliveryState
    delay: float | None = None
    reason: str | None = None

    @classmethod
    def done(cls, reason: str | None = None) -> DeliveryOutcome:
        return cls(DeliveryState.DONE, reason=reason)

    @classmethod
    def retry(cls, delay: float | None = None, reason: str | None = None) -> DeliveryOutcome:
        return cls(DeliveryState.RETRY, delay=delay, reason=reason)

    @classmethod
    def split(cls) -> DeliveryOutcome:
        return cls(DeliveryState.SPLIT, reason="payload too large")


def parse_retry_after(headers: Mapping[str, str]) -> float:
    """Read the Retry-After header as whole seconds.

    Raises:
        ValueError: If the header is missing or not a non-negative integer
    """
    raw = headers.get("retry-after")
    if raw is None:
        raise ValueError("missing Retry-After header")
    value = raw.strip()
    if not value.isascii() or not value.isdigit():
        raise ValueError(f"Retry-After is not an integer number of seconds: {raw!r}")
    return float(int(value))


def classify_response(status_code: int, headers: Mapping[str, str]) -> DeliveryOutcome:
    """Decide what to do with a batch given the ingest API response.

    | Status                              | Outcome                       |
    |-------------------------------------|-------------------------------|
    | 200-299                             | Done                          |
    | 400 401 403 404 405 409 410 411     | Done (batch dropped)          |
    | 413                                 | Split                         |
    | 429 with integer Retry-After        | Retry after Retry-After       |
    | 429 without a usable Retry-After    | Done (batch dropped)          |
    | anything else                       | Retry on the backoff sequence |

    Args:
        status_code: HTTP status of the response
        headers: Response headers (case-insensitive mapping)
    """
    if 200 <= status_code <= 299:
        return DeliveryOutcome.done()
    if status_code in NON_RETRYABLE_STATUS_CODES:
        return DeliveryOutcome.done(reason=f"rejected with status {status_code}")
    if status_code == PAYLOAD_TOO_LARGE:
        return DeliveryOutcome.split()
    if status_code == TOO_MANY_REQUESTS:
        try:
            delay = parse_retry_after(headers)
        except ValueError as e:
            return DeliveryOutcome.done(reason=str(e))
        return DeliveryOutcome.retry(delay=delay, reason="rate limited")
    return DeliveryOutcome.retry(reason=f"status {status_code}")


def gzip_compress(text: str) -> bytes:
    """Gzip-compress UTF-8 text.

    Raises:
        EncodingError: If the text cannot be encoded or compressed
    """
    try:
        return gzip.compress(text.encode("utf-8"), compresslevel=GZIP_COMPRESSION_LEVEL)
    except (UnicodeEncodeError, OSError, ValueError) as e:
        raise EncodingError(f"Cannot compress payload: {e}") from e


def _is_retry(outcome: DeliveryOutcome) -> bool:
    return outcome.state is DeliveryState.RETRY


class DeliveryEngine:
    """Delivers batches to ingest endpoints with retry, backoff and splitting.

    One engine is shared by all deliveries of a client. It holds no
    per-batch state, so concurrent deliveries of independent batches are
    safe. Attempts for one batch are strictly sequential.

    Example:
        engine = DeliveryEngine(
            http_client=httpx.AsyncClient(),
            api_key="...",
            user_agent="NewRelic-Python-TelemetrySDK/0.4.0",
            backoff_sequence=(0.0, 5.0, 10.0),
        )
        await engine.deliver(batch, httpx.URL("https://trace-api.newrelic.com/trace/v1"))
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        api_key: str,
        user_agent: str,
        backoff_sequence: tuple[float, ...],
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            http_client: Client used to send requests. The engine does not
                own it unless aclose() is called.
            api_key: Value of the Api-Key header
            user_agent: Value of the User-Agent header
            backoff_sequence: Waits before each retry, in seconds
            sleep: Coroutine function used for backoff waits
        """
        self._client = http_client
        self._api_key = api_key
        self._user_agent = user_agent
        self._backoff_sequence = backoff_sequence
        self._sleep = sleep

    @property
    def backoff_sequence(self) -> tuple[float, ...]:
        return self._backoff_sequence

    @property
    def max_attempts(self) -> int:
        """Initial attempt plus one retry per backoff element."""
        return len(self._backoff_sequence) + 1

    def build_request(self, batch: Sendable, endpoint: httpx.URL) -> httpx.Request:
        """Encode a batch into a POST request for the given endpoint.

        Raises:
            EncodingError: If the batch cannot be serialized or compressed
        """
        body = gzip_compress(batch.marshall())
        return self._client.build_request(
            "POST",
            endpoint,
            headers={
                "Api-Key": self._api_key,
                "Data-Format": "newrelic",
                "Data-Format-Version": "1",
                "x-request-id": batch.uuid,
                "User-Agent": self._user_agent,
                "Content-Encoding": "gzip",
                "Content-Type": "application/json",
            },
            content=body,
        )

    async def deliver(self, batch: Sendable, endpoint: httpx.URL) -> None:
        """Deliver a batch, retrying and splitting as the backend requires.

        Returns once the batch (and any halves split from it) reached a
        terminal state: delivered, dropped, or retries exhausted.
        """
        log = logger.bind(batch=str(batch), batch_id=batch.uuid, endpoint=str(endpoint))

        def log_retry(retry_state: RetryCallState) -> None:
            wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
            log.debug("Retrying batch", attempt=retry_state.attempt_number, wait_seconds=wait)

        outcome = DeliveryOutcome.done()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_backoff_sequence(self._backoff_sequence),
                retry=retry_if_result(_is_retry),
                sleep=self._sleep,
                before_sleep=log_retry,
            ):
                with attempt:
                    outcome = await self._attempt(batch, endpoint)
                if not attempt.retry_state.outcome.failed:  # type: ignore[union-attr]
                    attempt.retry_state.set_result(outcome)
        except RetryError:
            log.error(
                "Retries exhausted, dropping batch",
                attempts=self.max_attempts,
                last_reason=outcome.reason,
            )
            return

        if outcome.state is DeliveryState.SPLIT:
            await self._split_and_deliver(batch, endpoint)

    async def _split_and_deliver(self, batch: Sendable, endpoint: httpx.URL) -> None:
        if len(batch) < 2:
            logger.error(
                "Payload too large and cannot be split further, dropping batch",
                batch=str(batch),
                batch_id=batch.uuid,
            )
            return

        other = batch.split()
        logger.info(
            "Payload too large, delivering batch in two halves",
            first=str(batch),
            first_id=batch.uuid,
            second=str(other),
            second_id=other.uuid,
        )
        # Each half restarts its own backoff sequence
        halves = (batch, other)
        results = await asyncio.gather(*(self.deliver(half, endpoint) for half in halves), return_exceptions=True)
        for half, result in zip(halves, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Batch delivery failed unexpectedly",
                    batch=str(half),
                    batch_id=half.uuid,
                    error=str(result),
                    error_type=type(result).__name__,
                )

    async def _attempt(self, batch: Sendable, endpoint: httpx.URL) -> DeliveryOutcome:
        """Make one attempt and classify the result.

        Encoding and transport failures are logged and reported as Done: a
        batch that cannot be encoded never will be, and a failed connection
        is not retried by this client.
        """
        try:
            request = self.build_request(batch, endpoint)
        except EncodingError as e:
            logger.error("Cannot encode batch, dropping", batch=str(batch), batch_id=batch.uuid, error=str(e))
            return DeliveryOutcome.done(reason="encoding failed")

        try:
            response = await self._client.send(request)
        except httpx.RequestError as e:
            logger.error(
                "Cannot send batch, dropping",
                batch=str(batch),
                batch_id=batch.uuid,
                error=str(e),
                error_type=type(e).__name__,
            )
            return DeliveryOutcome.done(reason="transport failed")

        outcome = classify_response(response.status_code, response.headers)
        self._log_outcome(batch, response.status_code, outcome)
        return outcome

    def _log_outcome(self, batch: Sendable, status_code: int, outcome: DeliveryOutcome) -> None:
        log = logger.bind(batch=str(batch), batch_id=batch.uuid, status=status_code)
        if outcome.state is DeliveryState.SPLIT:
            log.info("Payload too large, splitting batch")
        elif outcome.state is DeliveryState.RETRY:
            if outcome.delay is not None:
                log.info("Rate limited, retrying after Retry-After", retry_after_seconds=outcome.delay)
            else:
                log.debug("Retryable response", reason=outcome.reason)
        elif 200 <= status_code <= 299:
            log.debug("Batch delivered")
        else:
            log.error("Batch rejected, dropping", reason=outcome.reason)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
