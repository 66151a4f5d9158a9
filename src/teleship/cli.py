"""Teleship Command Line Interface.

Entry point for the teleship CLI tool: send a batch from a JSON file, or
check a settings file.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from teleship import __version__
from teleship.client import Client, resolve_endpoints
from teleship.contracts.enums import TelemetryKind
from teleship.contracts.errors import InvalidEndpointError, TeleshipError
from teleship.core.config import ClientConfig, load_config
from teleship.model.attribute import AttributeValue
from teleship.model.batch import TelemetryBatch
from teleship.model.metric import CountMetric, GaugeMetric, Metric, MetricBatch, SummaryMetric
from teleship.model.span import Span, SpanBatch

__all__ = ["app"]

app = typer.Typer(
    name="teleship",
    help="Teleship: deliver spans and metrics to New Relic ingest APIs.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"teleship version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging, including every delivery attempt.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs.",
    ),
) -> None:
    """Teleship: deliver spans and metrics to New Relic ingest APIs."""
    from teleship.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


def _load_client_config(settings: str) -> ClientConfig:
    """Load settings, turning every failure into a message and exit code 1."""
    settings_path = Path(settings).expanduser()
    try:
        return load_config(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {settings}: {e.problem}", err=True)
        raise typer.Exit(1) from None
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


def _attributes(raw: Any) -> dict[str, AttributeValue]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"attributes must be an object, got {type(raw).__name__}")
    return {str(key): AttributeValue.from_python(value) for key, value in raw.items()}


def _span_from_json(raw: dict[str, Any]) -> Span:
    return Span(
        id=str(raw["id"]),
        trace_id=str(raw["trace.id"]),
        timestamp=raw.get("timestamp"),
        attributes=_attributes(raw.get("attributes")),
    )


def _metric_from_json(raw: dict[str, Any]) -> Metric:
    name = str(raw["name"])
    metric_type = raw.get("type", "gauge")
    timestamp = raw.get("timestamp")
    attributes = _attributes(raw.get("attributes"))
    interval = raw.get("interval.ms")

    if metric_type == "gauge":
        return GaugeMetric(name, timestamp, attributes, value=raw.get("value"))
    if metric_type == "count":
        return CountMetric(name, timestamp, attributes, value=raw.get("value"), interval_ms=interval)
    if metric_type == "summary":
        metric = SummaryMetric(name, timestamp, attributes, interval_ms=interval)
        value = raw.get("value")
        if value is not None:
            metric.set_value(value["count"], value["sum"], value["min"], value["max"])
        return metric
    raise ValueError(f"unknown metric type {metric_type!r}")


def batch_from_document(document: Any, kind: TelemetryKind) -> TelemetryBatch[Any]:
    """Build a batch from a JSON document.

    The document is either the wire form (a one-element array) or its
    single object: ``{"common": {"attributes": {...}}, "spans": [...]}``.

    Raises:
        ValueError: If the document does not describe a valid batch
    """
    if isinstance(document, list):
        if len(document) != 1:
            raise ValueError("expected a single batch object")
        document = document[0]
    if not isinstance(document, dict):
        raise ValueError("expected a JSON object")

    common_section = document.get("common") or {}
    if not isinstance(common_section, dict):
        raise ValueError("'common' must be an object")
    common = _attributes(common_section.get("attributes"))
    records = document.get(kind.value, [])
    if not isinstance(records, list):
        raise ValueError(f"'{kind.value}' must be an array")

    try:
        if kind is TelemetryKind.SPANS:
            return SpanBatch([_span_from_json(r) for r in records], common)
        return MetricBatch([_metric_from_json(r) for r in records], common)
    except KeyError as e:
        raise ValueError(f"missing field {e.args[0]!r}") from e


@app.command()
def send(
    file: Path = typer.Argument(
        ...,
        help="JSON file holding the batch to send.",
    ),
    kind: TelemetryKind = typer.Option(
        TelemetryKind.SPANS,
        "--kind",
        "-k",
        help="Telemetry kind in the file.",
    ),
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Deliver one batch read from a JSON file.

    Retries, backoff and splitting apply as for any other delivery. Delivery
    failures are logged, not reported through the exit code.
    """
    config = _load_client_config(settings)

    try:
        document = json.loads(file.read_text(encoding="utf-8"))
    except FileNotFoundError:
        typer.echo(f"Error: Input file not found: {file}", err=True)
        raise typer.Exit(1) from None
    except json.JSONDecodeError as e:
        typer.echo(f"Error: {file} is not valid JSON: {e}", err=True)
        raise typer.Exit(1) from None

    try:
        batch = batch_from_document(document, kind)
    except (ValueError, TypeError) as e:
        typer.echo(f"Error: Invalid {kind.value} document: {e}", err=True)
        raise typer.Exit(1) from None

    try:
        client = Client(config)
    except InvalidEndpointError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    async def _deliver() -> None:
        async with client:
            await client.send(batch, kind)

    asyncio.run(_deliver())
    typer.echo(f"Delivery of {batch} to {client.endpoints[kind]} finished.")


@app.command("check-config")
def check_config(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Validate a settings file and show the resolved delivery settings."""
    config = _load_client_config(settings)

    try:
        endpoints = resolve_endpoints(config)
    except TeleshipError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    typer.echo("Configuration valid.")
    typer.echo(f"  Traces endpoint: {endpoints[TelemetryKind.SPANS]}")
    typer.echo(f"  Metrics endpoint: {endpoints[TelemetryKind.METRICS]}")
    typer.echo(f"  User-Agent: {config.user_agent()}")
    typer.echo(f"  Backoff (seconds): {list(config.backoff_sequence())}")
    typer.echo(f"  Queue max per cycle: {config.blocking_queue_max}")


if __name__ == "__main__":
    app()
