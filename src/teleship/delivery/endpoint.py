"""Ingest endpoint resolution.

Turns a configured host, optional port, API path and TLS flag into a
validated absolute URL. Resolution happens once at client construction, so
a malformed host fails fast instead of producing broken requests later.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import httpx

from teleship.contracts.errors import InvalidEndpointError

TRACE_API_PATH = "trace/v1"
METRIC_API_PATH = "metric/v1"

_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9_-]*[A-Za-z0-9])?"
_HOSTNAME_PATTERN = re.compile(rf"^{_LABEL}(?:\.{_LABEL})*$")
_IPV6_PATTERN = re.compile(r"^\[[0-9A-Fa-f:.]+\]$")


@dataclass(frozen=True, slots=True)
class Endpoint:
    """A New Relic ingest endpoint.

    Attributes:
        host: Host name or address; IPv6 addresses are given in brackets
        port: Port, or None for the scheme default
        path: API path, e.g. ``trace/v1``
    """

    host: str
    port: int | None
    path: str

    def uri(self, use_tls: bool) -> httpx.URL:
        """Build the absolute URL for this endpoint.

        Raises:
            InvalidEndpointError: If the host or port is malformed
        """
        return resolve_endpoint(self.host, self.port, self.path, use_tls=use_tls)


def _check_host(host: str, port: int | None) -> None:
    if host == "":
        raise InvalidEndpointError(host, port, "host must not be empty")
    if "://" in host:
        raise InvalidEndpointError(host, port, "host must not include a scheme")
    if _IPV6_PATTERN.match(host):
        return
    if ":" in host:
        raise InvalidEndpointError(host, port, "host must not include a port; configure the port separately")
    if not _HOSTNAME_PATTERN.match(host):
        raise InvalidEndpointError(host, port, "host contains characters not allowed in a host name")


def resolve_endpoint(host: str, port: int | None, path: str, *, use_tls: bool) -> httpx.URL:
    """Build ``scheme://host[:port]/path`` and validate it.

    The scheme is ``https`` when ``use_tls`` is set, ``http`` otherwise.
    Pure and deterministic.

    Args:
        host: Host name or address, without scheme or port
        port: Optional port (1-65535)
        path: API path, with or without a leading slash
        use_tls: Whether to use HTTPS

    Returns:
        The resolved URL

    Raises:
        InvalidEndpointError: If the composed string is not a well-formed
            absolute URL for the given host
    """
    _check_host(host, port)
    if port is not None and not 0 < port <= 65535:
        raise InvalidEndpointError(host, port, "port must be between 1 and 65535")

    scheme = "https" if use_tls else "http"
    port_part = f":{port}" if port is not None else ""
    raw = f"{scheme}://{host}{port_part}/{path.lstrip('/')}"

    try:
        url = httpx.URL(raw)
    except httpx.InvalidURL as e:
        raise InvalidEndpointError(host, port, str(e)) from e

    if not url.is_absolute_url or url.host != host.strip("[]").lower():
        raise InvalidEndpointError(host, port, f"'{raw}' does not parse as an absolute URL for this host")
    return url
