"""Tests for ingest endpoint resolution."""

import pytest

from teleship.contracts.errors import ConfigurationError, InvalidEndpointError
from teleship.delivery.endpoint import METRIC_API_PATH, TRACE_API_PATH, Endpoint, resolve_endpoint


class TestResolveEndpoint:
    @pytest.mark.parametrize(
        ("host", "port", "path", "use_tls", "expected"),
        [
            ("trace-api.newrelic.com", None, TRACE_API_PATH, True, "https://trace-api.newrelic.com/trace/v1"),
            ("metric-api.newrelic.com", None, METRIC_API_PATH, True, "https://metric-api.newrelic.com/metric/v1"),
            ("127.0.0.1", 8080, TRACE_API_PATH, False, "http://127.0.0.1:8080/trace/v1"),
            ("localhost", 8443, "/trace/v1", True, "https://localhost:8443/trace/v1"),
            ("[::1]", 9000, TRACE_API_PATH, False, "http://[::1]:9000/trace/v1"),
        ],
    )
    def test_valid_endpoints(self, host: str, port: int | None, path: str, use_tls: bool, expected: str) -> None:
        assert str(resolve_endpoint(host, port, path, use_tls=use_tls)) == expected

    @pytest.mark.parametrize(
        ("host", "port"),
        [
            ("host:80", 80),
            ("?", None),
            ("", None),
            (":80", None),
            ("https://trace-api.newrelic.com", None),
            ("bad host", None),
            ("under_score-.example", None),
        ],
    )
    def test_malformed_hosts_rejected(self, host: str, port: int | None) -> None:
        with pytest.raises(InvalidEndpointError) as exc_info:
            resolve_endpoint(host, port, TRACE_API_PATH, use_tls=True)

        assert exc_info.value.host == host
        assert exc_info.value.port == port

    @pytest.mark.parametrize("port", [0, 65536, -1])
    def test_port_out_of_range(self, port: int) -> None:
        with pytest.raises(InvalidEndpointError, match="port must be between 1 and 65535"):
            resolve_endpoint("localhost", port, TRACE_API_PATH, use_tls=True)

    def test_error_is_a_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError, match="Invalid endpoint 'host:80:80'"):
            resolve_endpoint("host:80", 80, TRACE_API_PATH, use_tls=True)


class TestEndpoint:
    def test_uri_uses_tls_flag(self) -> None:
        endpoint = Endpoint("localhost", 8080, TRACE_API_PATH)

        assert str(endpoint.uri(True)) == "https://localhost:8080/trace/v1"
        assert str(endpoint.uri(False)) == "http://localhost:8080/trace/v1"
