"""Shared test fixtures.

Fixtures:
- recording_sleep: awaitable stand-in for asyncio.sleep that records every
  backoff wait instead of waiting
- make_config: ClientConfig factory with a test API key and zero backoff
- make_spans: factory for spans with predictable ids

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

import logging
import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest
import structlog
from hypothesis import Phase, Verbosity, settings

from teleship.core.config import ClientConfig
from teleship.model.span import Span


class RecordingSleep:
    """Records requested waits and returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_config() -> Callable[..., ClientConfig]:
    """Factory for ClientConfig with test defaults.

    Defaults: api_key "test-api-key", backoff factor 0 so waits are all
    zero. Any field can be overridden by keyword.
    """

    def _make(**overrides: Any) -> ClientConfig:
        fields: dict[str, Any] = {"api_key": "test-api-key", "backoff_factor_seconds": 0.0}
        fields.update(overrides)
        return ClientConfig(**fields)

    return _make


@pytest.fixture
def make_spans() -> Callable[[int], list[Span]]:
    def _make(count: int) -> list[Span]:
        return [Span(f"span-{i}", "trace-1", 1_000 + i) for i in range(count)]

    return _make


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Undo configure_logging() so handlers never outlive a test's streams."""
    yield
    structlog.reset_defaults()
    root = logging.getLogger()
    root.handlers = []
    root.setLevel(logging.WARNING)


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
