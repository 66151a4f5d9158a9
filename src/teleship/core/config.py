"""
Configuration schema and loading for teleship clients.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, SecretStr, field_validator

from teleship import __version__
from teleship.delivery.backoff import compute_backoff_sequence

DEFAULT_TRACES_HOST = "trace-api.newrelic.com"
DEFAULT_METRICS_HOST = "metric-api.newrelic.com"

USER_AGENT_PREFIX = "NewRelic-Python-TelemetrySDK"


class EndpointSettings(BaseModel):
    """Ingest host and optional port for one telemetry kind.

    The API path is fixed per telemetry kind and is not configurable.
    Host syntax is checked when the client resolves the endpoint URI.

    Example YAML:
        traces_endpoint:
          host: 127.0.0.1
          port: 8080
    """

    model_config = {"frozen": True}

    host: str = Field(description="Ingest host name or address, without scheme or port")
    port: int | None = Field(
        default=None,
        ge=1,
        le=65535,
        description="Ingest port; the scheme default is used when omitted",
    )


class ProductInfo(BaseModel):
    """Product name and version appended to the User-Agent header."""

    model_config = {"frozen": True}

    name: str = Field(min_length=1, description="Product name, e.g. NewRelic-Cpp-OpenTelemetry")
    version: str = Field(min_length=1, description="Product version, e.g. 0.2.1")

    @field_validator("name", "version")
    @classmethod
    def validate_no_whitespace(cls, v: str) -> str:
        """User-Agent product tokens cannot contain whitespace or slashes."""
        if re.search(r"[\s/]", v):
            raise ValueError(f"must not contain whitespace or '/', got {v!r}")
        return v


class ClientConfig(BaseModel):
    """Configuration consumed by Client and BlockingClient.

    Defaults:
        - backoff factor 5 seconds, 8 retries: waits of
          [0, 5, 10, 20, 40, 80, 160, 320] seconds between attempts
        - TLS enabled against the public New Relic ingest hosts
        - at most 100 batches delivered per drain cycle in queued mode

    Example YAML:
        api_key: ${NEW_RELIC_API_KEY}
        backoff_factor_seconds: 2
        retries_max: 6
        product_info:
          name: MyExporter
          version: 1.0.0
    """

    model_config = {"frozen": True}

    api_key: SecretStr = Field(description="New Relic Insert or License API key")
    backoff_factor_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Base of the exponential backoff between retries",
    )
    retries_max: int = Field(
        default=8,
        ge=0,
        description="Retries after the initial attempt; 0 disables retrying",
    )
    traces_endpoint: EndpointSettings = Field(
        default_factory=lambda: EndpointSettings(host=DEFAULT_TRACES_HOST),
        description="Trace API endpoint",
    )
    metrics_endpoint: EndpointSettings = Field(
        default_factory=lambda: EndpointSettings(host=DEFAULT_METRICS_HOST),
        description="Metric API endpoint",
    )
    use_tls: bool = Field(
        default=True,
        description="Use HTTPS. New Relic endpoints only accept HTTPS; disable for local testing",
    )
    product_info: ProductInfo | None = Field(
        default=None,
        description="Product appended to the User-Agent header",
    )
    blocking_queue_max: int = Field(
        default=100,
        ge=1,
        description="Maximum batches delivered per drain cycle in queued mode; excess is dropped",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout for a single HTTP request",
    )

    def backoff_sequence(self) -> tuple[float, ...]:
        """Waits, in seconds, before each retry."""
        return compute_backoff_sequence(self.backoff_factor_seconds, self.retries_max)

    def user_agent(self) -> str:
        """User-Agent header value, with the product suffix when configured."""
        header = f"{USER_AGENT_PREFIX}/{__version__}"
        if self.product_info is not None:
            header = f"{header} {self.product_info.name}/{self.product_info.version}"
        return header


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Args:
        config: Configuration dict (may contain nested structures)

    Returns:
        New dict with environment variables expanded
    """

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            default = match.group(2)
            if default is not None:
                return default
            # Unset and no default: leave as-is so validation reports it
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def load_config(config_path: Path) -> ClientConfig:
    """Load client configuration from YAML with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (TELESHIP_*) - highest priority
    2. Config file
    3. Defaults from the Pydantic schema - lowest priority

    Environment variable format: TELESHIP_TRACES_ENDPOINT__HOST for nested keys.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated ClientConfig instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="TELESHIP",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; Pydantic fields are lowercase
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {
        k.lower(): _lower_keys(v) for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys
    }
    raw_config = _expand_env_vars(raw_config)

    return ClientConfig(**raw_config)
