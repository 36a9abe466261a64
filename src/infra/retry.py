from __future__ import annotations

import random
from typing import Awaitable, Callable, TypeVar, cast

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
)
from tenacity.wait import wait_base

LOGGER = structlog.get_logger(__name__)

T = TypeVar("T")


class _JitteredExponentialWait(wait_base):
    """``initial * 2**(attempt-1)`` scaled by ``1 + uniform(jitter)``, clamped to ``[0, max]``."""

    def __init__(self, initial: float, maximum: float, jitter: tuple[float, float]) -> None:
        self._initial = float(initial)
        self._max = float(maximum)
        self._jitter = jitter

    def __call__(self, retry_state: RetryCallState) -> float:
        low, high = self._jitter
        base = self._initial * (2 ** max(0, retry_state.attempt_number - 1))
        seconds = base * (1.0 + random.uniform(low, high))
        return max(0.0, min(seconds, self._max))


def _log_before_sleep(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    LOGGER.warning(
        "retry.attempt_failed",
        function=getattr(retry_state.fn, "__name__", "<unknown>"),
        attempt=retry_state.attempt_number,
        error=str(error) if error is not None else None,
    )


def exponential_backoff_with_jitter(
    *,
    max_attempts: int = 5,
    initial_wait: float = 0.5,
    max_wait: float = 10.0,
    jitter_range: tuple[float, float] = (-0.2, 0.2),
    retry_on: type[Exception] | tuple[type[Exception], ...] = Exception,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Retry an async callable on ``retry_on`` with jittered exponential backoff.

    The last exception is re-raised once ``max_attempts`` is exhausted.
    """
    return cast(
        Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]],
        retry(
            stop=stop_after_attempt(max_attempts),
            wait=_JitteredExponentialWait(initial_wait, max_wait, jitter_range),
            retry=retry_if_exception_type(retry_on),
            before_sleep=_log_before_sleep,
            reraise=True,
        ),
    )


__all__ = ["exponential_backoff_with_jitter"]
