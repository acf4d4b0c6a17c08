"""
Tests for the retry module.
"""

from unittest.mock import MagicMock

import pytest

from msgclass_cleaner.models import RemoteResult
from msgclass_cleaner.retry import RemoteOperationError, RemoteOperationExecutor, RetryPolicy

THROTTLED = RemoteResult.failure("429 TooManyRequests: slow down", retryable=True, status_code=429)


class TestRetryPolicy:
    """Tests for adaptive delay adjustments."""

    def test_starts_at_minimum(self):
        policy = RetryPolicy(min_delay=0.5, max_delay=10)

        assert policy.delay == 0.5

    @pytest.mark.parametrize("successes", [0, 1, 2, 5])
    def test_successes_halve_down_to_minimum(self, successes):
        policy = RetryPolicy(min_delay=0.1, max_delay=100, factor=2.0, initial_delay=3.2)

        for _ in range(successes):
            policy.record_success()

        assert policy.delay == pytest.approx(max(0.1, 3.2 / 2.0 ** successes))

    def test_successes_never_go_below_minimum(self):
        policy = RetryPolicy(min_delay=0.1, max_delay=100)

        for _ in range(10):
            policy.record_success()

        assert policy.delay == 0.1

    def test_throttling_multiplies_and_adds_increment(self):
        policy = RetryPolicy(min_delay=1.0, max_delay=1000, factor=2.0, increment=0.5)

        assert policy.record_throttled() == pytest.approx(2.5)
        assert policy.record_throttled() == pytest.approx(5.5)
        assert policy.record_throttled() == pytest.approx(11.5)

    def test_throttling_is_capped_at_maximum(self):
        policy = RetryPolicy(min_delay=1.0, max_delay=10.0, factor=2.0, increment=1.0)

        delays = [policy.record_throttled() for _ in range(10)]

        assert max(delays) == 10.0
        assert delays == sorted(delays)

    def test_wait_uses_injected_sleep(self):
        sleeps = []
        policy = RetryPolicy(min_delay=0.2, sleep=sleeps.append)

        policy.wait()

        assert sleeps == [0.2]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"min_delay": 0},
            {"min_delay": 5, "max_delay": 1},
            {"factor": 1.0},
        ],
    )
    def test_rejects_invalid_bounds(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestRemoteOperationExecutor:
    """Tests for retrying throttled calls."""

    def test_success_returns_value_and_paces(self, sleeps):
        policy = RetryPolicy(min_delay=0.1, initial_delay=0.4, sleep=sleeps.append)
        executor = RemoteOperationExecutor(policy)
        func = MagicMock(return_value=RemoteResult.success("value"))

        assert executor.call("Find items", func, "a", page_size=5) == "value"

        func.assert_called_once_with("a", page_size=5)
        assert sleeps == [pytest.approx(0.2)]

    def test_throttled_call_is_retried_until_success(self, sleeps):
        policy = RetryPolicy(min_delay=1.0, max_delay=100, factor=2.0, increment=0.0, sleep=sleeps.append)
        executor = RemoteOperationExecutor(policy)
        func = MagicMock(side_effect=[THROTTLED, THROTTLED, THROTTLED, RemoteResult.success(42)])

        assert executor.call("Delete items", func) == 42

        assert func.call_count == 4
        assert executor.throttled_count == 3
        assert sleeps == [2.0, 4.0, 8.0, 4.0]

    def test_hard_failure_raises_without_sleeping(self, sleeps):
        executor = RemoteOperationExecutor(RetryPolicy(sleep=sleeps.append))
        failure = RemoteResult.failure("403 ErrorAccessDenied: no", status_code=403)
        func = MagicMock(return_value=failure)

        with pytest.raises(RemoteOperationError) as excinfo:
            executor.call("Bind msgfolderroot", func)

        func.assert_called_once()
        assert sleeps == []
        assert excinfo.value.status_code == 403
        assert "Bind msgfolderroot" in str(excinfo.value)

    def test_hard_failure_after_throttling_keeps_raised_delay(self, sleeps):
        policy = RetryPolicy(min_delay=1.0, max_delay=100, factor=2.0, increment=0.0, sleep=sleeps.append)
        executor = RemoteOperationExecutor(policy)
        func = MagicMock(side_effect=[THROTTLED, RemoteResult.failure("500 boom", status_code=500)])

        with pytest.raises(RemoteOperationError):
            executor.call("Find folders", func)

        assert sleeps == [2.0]
        assert policy.delay == 2.0

    def test_policy_is_shared_across_calls(self, sleeps):
        policy = RetryPolicy(min_delay=1.0, max_delay=100, factor=2.0, increment=0.0, sleep=sleeps.append)
        executor = RemoteOperationExecutor(policy)

        executor.call("first", MagicMock(side_effect=[THROTTLED, THROTTLED, RemoteResult.success()]))
        executor.call("second", MagicMock(return_value=RemoteResult.success()))

        assert sleeps == [2.0, 4.0, 2.0, 1.0]
