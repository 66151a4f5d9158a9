"""Tests for the backoff sequence and its tenacity wait strategy."""

from types import SimpleNamespace

import pytest
from hypothesis import given
from hypothesis import strategies as st

from teleship.delivery.backoff import MAX_BACKOFF_SECONDS, compute_backoff_sequence, wait_backoff_sequence


class TestComputeBackoffSequence:
    def test_factor_two_six_retries(self) -> None:
        assert compute_backoff_sequence(2.0, 6) == (0.0, 2.0, 4.0, 8.0, 16.0, 32.0)

    def test_zero_retries_is_empty(self) -> None:
        assert compute_backoff_sequence(5.0, 0) == ()

    def test_defaults(self) -> None:
        assert compute_backoff_sequence(5.0, 8) == (0.0, 5.0, 10.0, 20.0, 40.0, 80.0, 160.0, 320.0)

    def test_zero_factor(self) -> None:
        assert compute_backoff_sequence(0.0, 3) == (0.0, 0.0, 0.0)

    def test_huge_sequences_saturate(self) -> None:
        sequence = compute_backoff_sequence(1e300, 2000)

        assert len(sequence) == 2000
        assert sequence[-1] == MAX_BACKOFF_SECONDS
        assert all(delay <= MAX_BACKOFF_SECONDS for delay in sequence)

    @pytest.mark.parametrize(("factor", "retries"), [(-1.0, 3), (1.0, -1)])
    def test_negative_inputs_rejected(self, factor: float, retries: int) -> None:
        with pytest.raises(ValueError):
            compute_backoff_sequence(factor, retries)

    @given(
        factor=st.floats(min_value=0, max_value=1e6, allow_nan=False),
        retries=st.integers(min_value=0, max_value=64),
    )
    def test_sequence_shape(self, factor: float, retries: int) -> None:
        sequence = compute_backoff_sequence(factor, retries)

        assert len(sequence) == retries
        if retries:
            assert sequence[0] == 0.0
        assert list(sequence) == sorted(sequence)


def _state(attempt_number: int, result: object = None, failed: bool = False) -> SimpleNamespace:
    outcome = SimpleNamespace(failed=failed, result=lambda: result)
    return SimpleNamespace(attempt_number=attempt_number, outcome=outcome)


class TestWaitBackoffSequence:
    def test_wait_follows_attempt_number(self) -> None:
        wait = wait_backoff_sequence((0.0, 2.0, 4.0))

        assert [wait(_state(n)) for n in (1, 2, 3)] == [0.0, 2.0, 4.0]

    def test_explicit_delay_overrides_one_wait(self) -> None:
        wait = wait_backoff_sequence((0.0, 2.0, 4.0))

        assert wait(_state(2, SimpleNamespace(delay=7.0))) == 7.0
        assert wait(_state(3, SimpleNamespace(delay=None))) == 4.0

    def test_empty_sequence_never_waits(self) -> None:
        assert wait_backoff_sequence(())(_state(1)) == 0.0

    def test_failed_outcome_uses_sequence(self) -> None:
        wait = wait_backoff_sequence((1.0,))
        assert wait(_state(1, failed=True)) == 1.0
