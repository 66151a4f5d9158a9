"""Backoff policy for delivery retries.

The wait before retry ``k`` (1-based) is element ``k - 1`` of a sequence
precomputed from the backoff factor:

    [0, factor, factor * 2, factor * 4, ...]

so the first retry is immediate. For a factor of 1 second and 6 retries the
waits are [0, 1, 2, 4, 8, 16].
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from tenacity.wait import wait_base

if TYPE_CHECKING:
    from tenacity import RetryCallState

# Waits saturate here instead of overflowing to infinity
MAX_BACKOFF_SECONDS = timedelta.max.total_seconds()

# 2.0 ** 1023 is the largest finite power of two
_MAX_EXPONENT = 1023


def compute_backoff_sequence(factor: float, max_retries: int) -> tuple[float, ...]:
    """Precompute the wait before each retry, in seconds.

    Args:
        factor: Backoff factor in seconds (>= 0)
        max_retries: Number of retries after the initial attempt (>= 0)

    Returns:
        Sequence of ``max_retries`` waits. Element 0 is always 0; element
        ``k`` is ``factor * 2 ** (k - 1)``, saturated at MAX_BACKOFF_SECONDS.

    Raises:
        ValueError: If factor or max_retries is negative
    """
    if factor < 0:
        raise ValueError(f"backoff factor must be >= 0, got {factor}")
    if max_retries < 0:
        raise ValueError(f"max_retries must be >= 0, got {max_retries}")

    sequence: list[float] = []
    for k in range(max_retries):
        if k == 0:
            sequence.append(0.0)
            continue
        delay = factor * 2.0 ** min(k - 1, _MAX_EXPONENT)
        sequence.append(min(delay, MAX_BACKOFF_SECONDS))
    return tuple(sequence)


class wait_backoff_sequence(wait_base):
    """Tenacity wait strategy over a precomputed backoff sequence.

    When the last attempt returned an outcome carrying an explicit delay
    (a 429 response with Retry-After), that delay replaces the next wait
    only. The position in the sequence advances regardless, so later
    retries continue with the precomputed waits.
    """

    def __init__(self, sequence: tuple[float, ...]) -> None:
        self._sequence = sequence

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            explicit_delay = getattr(outcome.result(), "delay", None)
            if explicit_delay is not None:
                return float(explicit_delay)

        if not self._sequence:
            return 0.0
        # attempt_number counts attempts made so far, starting at 1
        index = min(retry_state.attempt_number - 1, len(self._sequence) - 1)
        return self._sequence[index]
