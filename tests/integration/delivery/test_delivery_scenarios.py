"""End-to-end delivery against mocked ingest endpoints.

Each test drives a real Client (async mode) or DeliveryQueue plus engine
(queued mode) against respx routes. Backoff waits go through a recording
sleep so retry timing is observable without real delays.
"""

import asyncio
import gzip
import json
import subprocess
import sys
import textwrap

import httpx
import pytest
import respx

from teleship.client import BlockingClient, Client
from teleship.delivery.engine import DeliveryEngine
from teleship.delivery.queue import DeliveryQueue
from teleship.model.metric import CountMetric, GaugeMetric, MetricBatch
from teleship.model.span import SpanBatch

pytestmark = pytest.mark.integration

TRACE_URL = "https://trace-api.newrelic.com/trace/v1"
METRIC_URL = "https://metric-api.newrelic.com/metric/v1"


def _body(request: httpx.Request) -> list[dict]:
    return json.loads(gzip.decompress(request.content))


def _send_spans(config, batch: SpanBatch, sleep) -> None:
    async def run() -> None:
        async with Client(config, sleep=sleep) as client:
            await client.send_spans(batch)

    asyncio.run(run())


# =============================================================================
# Async client
# =============================================================================


class TestAsyncClientScenarios:
    @respx.mock
    def test_empty_span_batch_sent_once(self, make_config, recording_sleep) -> None:
        route = respx.post(TRACE_URL).mock(return_value=httpx.Response(202))

        _send_spans(make_config(), SpanBatch(), recording_sleep)

        assert route.call_count == 1
        assert gzip.decompress(route.calls[0].request.content) == b'[{"spans":[]}]'

    @respx.mock
    def test_server_errors_give_up_after_retries(self, make_config, recording_sleep) -> None:
        route = respx.post(TRACE_URL).mock(return_value=httpx.Response(500))

        _send_spans(make_config(retries_max=3, backoff_factor_seconds=0), SpanBatch(), recording_sleep)

        # 1 initial attempt + 3 retries, never a 5th
        assert route.call_count == 4
        assert recording_sleep.delays == [0.0, 0.0, 0.0]

    @respx.mock
    def test_retry_after_overrides_backoff(self, make_config, recording_sleep) -> None:
        route = respx.post(TRACE_URL).mock(return_value=httpx.Response(429, headers={"Retry-After": "0"}))

        _send_spans(make_config(retries_max=5, backoff_factor_seconds=5), SpanBatch(), recording_sleep)

        assert route.call_count == 6
        assert recording_sleep.delays == [0.0] * 5

    @respx.mock
    def test_payload_too_large_splits_into_halves(self, make_config, recording_sleep, make_spans) -> None:
        route = respx.post(TRACE_URL).mock(
            side_effect=[httpx.Response(413), httpx.Response(202), httpx.Response(202)],
        )
        spans = make_spans(4)
        batch = SpanBatch(spans)
        batch.add_attribute("host", "web-1")

        _send_spans(make_config(), batch, recording_sleep)

        assert route.call_count == 3
        halves = [_body(call.request)[0] for call in route.calls[1:]]
        assert [len(half["spans"]) for half in halves] == [2, 2]
        sent_ids = sorted(span["id"] for half in halves for span in half["spans"])
        assert sent_ids == sorted(span.id for span in spans)
        assert all(half["common"] == {"attributes": {"host": "web-1"}} for half in halves)

    @respx.mock
    def test_metrics_delivered_to_metric_api(self, make_config, recording_sleep) -> None:
        route = respx.post(METRIC_URL).mock(return_value=httpx.Response(202))
        batch = MetricBatch(
            [GaugeMetric("temperature", 1000).set_value(21.5), CountMetric("requests", 1000).set_value(3).set_interval(10)]
        )

        async def run() -> None:
            async with Client(make_config(), sleep=recording_sleep) as client:
                await client.send_metrics(batch)

        asyncio.run(run())

        assert route.call_count == 1
        metrics = _body(route.calls[0].request)[0]["metrics"]
        assert [m["name"] for m in metrics] == ["temperature", "requests"]
        assert metrics[1]["interval.ms"] == 10

    @respx.mock
    def test_user_agent_includes_product(self, make_config, recording_sleep) -> None:
        route = respx.post(TRACE_URL).mock(return_value=httpx.Response(202))
        config = make_config(product_info={"name": "Exporter", "version": "2.0"})

        _send_spans(config, SpanBatch(), recording_sleep)

        assert route.calls[0].request.headers["User-Agent"].endswith(" Exporter/2.0")


# =============================================================================
# Queued mode
# =============================================================================


def _queued(config, sleep) -> tuple[DeliveryQueue, DeliveryEngine]:
    engine = DeliveryEngine(
        http_client=httpx.AsyncClient(),
        api_key=config.api_key.get_secret_value(),
        user_agent=config.user_agent(),
        backoff_sequence=config.backoff_sequence(),
        sleep=sleep,
    )
    return DeliveryQueue(engine.deliver, max_per_cycle=config.blocking_queue_max, on_close=engine.aclose), engine


class TestQueuedScenarios:
    @respx.mock
    def test_overflow_delivers_only_the_maximum(self, make_config, recording_sleep) -> None:
        route = respx.post(TRACE_URL).mock(return_value=httpx.Response(202))
        dq, _ = _queued(make_config(blocking_queue_max=1), recording_sleep)
        for _ in range(10):
            dq.submit(SpanBatch(), httpx.URL(TRACE_URL))

        dq.start()
        dq.shutdown()

        assert route.call_count == 1
        assert dq.health_metrics["batches_dropped"] == 9

    @respx.mock
    def test_within_maximum_everything_is_delivered(self, make_config, recording_sleep) -> None:
        route = respx.post(TRACE_URL).mock(return_value=httpx.Response(202))
        dq, _ = _queued(make_config(blocking_queue_max=10), recording_sleep)
        for _ in range(10):
            dq.submit(SpanBatch(), httpx.URL(TRACE_URL))

        dq.start()
        dq.shutdown()

        assert route.call_count == 10

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 405, 409, 410, 411])
    @respx.mock
    def test_rejected_batches_sent_once(self, make_config, recording_sleep, status: int) -> None:
        route = respx.post(TRACE_URL).mock(return_value=httpx.Response(status))

        with BlockingClient(make_config(), sleep=recording_sleep) as client:
            client.send_spans(SpanBatch())

        assert route.call_count == 1

    @respx.mock
    def test_retries_and_splits_in_queued_mode(self, make_config, recording_sleep, make_spans) -> None:
        route = respx.post(TRACE_URL).mock(
            side_effect=[
                httpx.Response(503),
                httpx.Response(413),
                httpx.Response(202),
                httpx.Response(202),
            ],
        )

        with BlockingClient(make_config(retries_max=2, backoff_factor_seconds=1), sleep=recording_sleep) as client:
            client.send_spans(SpanBatch(make_spans(4)))

        assert route.call_count == 4
        assert recording_sleep.delays == [0.0]

    @respx.mock
    def test_metrics_and_spans_routed_to_their_endpoints(self, make_config, recording_sleep) -> None:
        traces = respx.post(TRACE_URL).mock(return_value=httpx.Response(202))
        metrics = respx.post(METRIC_URL).mock(return_value=httpx.Response(202))

        with BlockingClient(make_config(), sleep=recording_sleep) as client:
            client.send_spans(SpanBatch())
            client.send_metrics(MetricBatch([GaugeMetric("g", 1).set_value(1)]))

        assert traces.call_count == 1
        assert metrics.call_count == 1


_FORGOTTEN_SHUTDOWN_SCRIPT = textwrap.dedent(
    """
    import httpx

    from teleship.client import BlockingClient
    from teleship.core.config import ClientConfig
    from teleship.model.span import SpanBatch

    def handler(request):
        print("delivered", request.url.path, flush=True)
        return httpx.Response(202)

    client = BlockingClient(ClientConfig(api_key="k"), transport=httpx.MockTransport(handler))
    client.send_spans(SpanBatch())
    # No shutdown(): the interpreter must still flush and exit
    """
)


class TestInterpreterExit:
    def test_exit_without_shutdown_flushes_and_terminates(self) -> None:
        result = subprocess.run(
            [sys.executable, "-c", _FORGOTTEN_SHUTDOWN_SCRIPT],
            capture_output=True,
            text=True,
            timeout=60,
        )

        assert result.returncode == 0, result.stderr
        assert "delivered /trace/v1" in result.stdout

    def test_exit_with_idle_client_terminates(self) -> None:
        script = (
            "from teleship.client import BlockingClient\n"
            "from teleship.core.config import ClientConfig\n"
            "BlockingClient(ClientConfig(api_key='k'))\n"
        )

        result = subprocess.run([sys.executable, "-c", script], capture_output=True, text=True, timeout=60)

        assert result.returncode == 0, result.stderr
