"""Teleship exceptions.

Only configuration and data-model errors are raised to callers. Failures on
the delivery path (encoding, transport, backend rejection) are logged and the
affected batch is dropped; they never propagate out of a send call.
"""


class TeleshipError(Exception):
    """Base class for all teleship errors."""


class ConfigurationError(TeleshipError):
    """Raised when client configuration is invalid.

    Configuration errors surface at client construction, before any batch
    reaches the delivery engine.
    """


class InvalidEndpointError(ConfigurationError):
    """Raised when an endpoint cannot be turned into a valid absolute URI.

    Attributes:
        host: Configured host string
        port: Configured port, if any
        reason: Human-readable description of the problem
    """

    def __init__(self, host: str, port: int | None, reason: str) -> None:
        self.host = host
        self.port = port
        self.reason = reason
        location = host if port is None else f"{host}:{port}"
        super().__init__(f"Invalid endpoint '{location}': {reason}")


class EncodingError(TeleshipError):
    """Raised when a batch cannot be serialized or compressed.

    Encoding failures are permanent for a given batch, so the delivery
    engine abandons the batch instead of retrying.
    """


class MetricValidationError(TeleshipError, ValueError):
    """Raised when a metric is recorded without its required fields."""

    def __init__(self, metric_name: str, message: str) -> None:
        self.metric_name = metric_name
        super().__init__(f"Metric '{metric_name}' is invalid: {message}")
