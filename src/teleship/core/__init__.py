"""Core infrastructure: configuration and logging."""

from teleship.core.config import ClientConfig, EndpointSettings, ProductInfo, load_config
from teleship.core.logging import configure_logging

__all__ = [
    "ClientConfig",
    "EndpointSettings",
    "ProductInfo",
    "configure_logging",
    "load_config",
]
