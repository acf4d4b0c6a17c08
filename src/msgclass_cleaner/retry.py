"""Throttling-aware execution of remote calls.

Objective:
    Wrap every call to the mail backend (folder search, item search, item
    delete, item update, well-known folder bind) so that server busy /
    throttling failures are retried with an adaptive delay while every other
    failure surfaces immediately.

Responsibilities:
    - Hold the adaptive delay for the whole invocation (:class:`RetryPolicy`).
    - Unwrap :class:`msgclass_cleaner.models.RemoteResult` values and decide
      between return, retry and raise (:class:`RemoteOperationExecutor`).

High-level call tree:
    - :meth:`RemoteOperationExecutor.call`
        - session method -> :class:`RemoteResult`
        - :meth:`RetryPolicy.record_success` / :meth:`RetryPolicy.record_throttled`
        - :meth:`RetryPolicy.wait`

Operational notes:
    - Throttled calls are retried without an attempt limit. Only the wait
      between attempts is bounded (``max_delay``).
    - The delay shrinks after every success and the executor still sleeps
      that reduced delay, pacing subsequent calls.
"""

import logging
import time
from typing import Any, Callable, Optional

from .models import RemoteResult

logger = logging.getLogger(__name__)


class RemoteOperationError(RuntimeError):
    """Raised when a remote call fails for a reason other than throttling.

    Args:
        operation: Human-readable description of the call.
        result: Failed result returned by the session.
    """

    def __init__(self, operation: str, result: RemoteResult) -> None:
        super().__init__(f"{operation} failed: {result.error}")
        self.operation = operation
        self.result = result

    @property
    def status_code(self) -> Optional[int]:
        return self.result.status_code


class RetryPolicy:
    """
    Adaptive delay between remote calls.

    The delay starts at ``min_delay``. A success divides it by ``factor``
    (never below ``min_delay``); a throttled attempt multiplies it by
    ``factor`` and adds ``increment`` (never above ``max_delay``).

    Attributes:
        min_delay: Lower bound in seconds.
        max_delay: Upper bound in seconds.
        factor: Multiplicative adjustment.
        increment: Seconds added after a throttled attempt.
        delay: Current delay in seconds.
    """

    def __init__(
        self,
        min_delay: float = 0.1,
        max_delay: float = 300.0,
        factor: float = 2.0,
        increment: float = 0.1,
        initial_delay: Optional[float] = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        if min_delay <= 0 or max_delay < min_delay:
            raise ValueError("Require 0 < min_delay <= max_delay")
        if factor <= 1:
            raise ValueError("factor must be greater than 1")

        self.min_delay = min_delay
        self.max_delay = max_delay
        self.factor = factor
        self.increment = increment
        start = min_delay if initial_delay is None else initial_delay
        self.delay = min(max(start, min_delay), max_delay)
        self._sleep = sleep

    def record_success(self) -> float:
        """Shrink the delay after a successful call.

        Returns:
            float: New delay in seconds.
        """
        self.delay = max(self.delay / self.factor, self.min_delay)
        return self.delay

    def record_throttled(self) -> float:
        """Grow the delay after a throttled call.

        Returns:
            float: New delay in seconds.
        """
        self.delay = min(self.delay * self.factor + self.increment, self.max_delay)
        return self.delay

    def wait(self) -> None:
        """Sleep for the current delay."""
        self._sleep(self.delay)


class RemoteOperationExecutor:
    """
    Runs session calls through a :class:`RetryPolicy`.

    Every component that talks to the backend receives the same executor so
    the adaptive delay reflects the backend's overall load.

    Attributes:
        policy: Adaptive delay shared by all calls.
        throttled_count: Number of throttled attempts seen so far.
    """

    def __init__(self, policy: Optional[RetryPolicy] = None) -> None:
        self.policy = policy or RetryPolicy()
        self.throttled_count = 0

    def call(self, operation: str, func: Callable[..., RemoteResult], *args: Any, **kwargs: Any) -> Any:
        """Execute ``func`` until it succeeds or fails without throttling.

        Args:
            operation: Description used in logs and errors.
            func: Session method returning a :class:`RemoteResult`.
            *args: Positional arguments for ``func``.
            **kwargs: Keyword arguments for ``func``.

        Returns:
            Any: ``RemoteResult.value`` of the successful attempt.

        Raises:
            RemoteOperationError: On a non-throttling failure.
        """
        while True:
            result = func(*args, **kwargs)

            if result.ok:
                self.policy.record_success()
                self.policy.wait()
                return result.value

            if result.retryable:
                self.throttled_count += 1
                delay = self.policy.record_throttled()
                logger.warning(
                    "%s throttled (%s); retrying in %.1fs",
                    operation,
                    result.error,
                    delay,
                )
                self.policy.wait()
                continue

            logger.error(f"{operation} failed: {result.error}")
            raise RemoteOperationError(operation, result)
