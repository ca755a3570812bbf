"""Backoff policy shared by the upstream clients."""

from __future__ import annotations

import random
from typing import Callable

from tenacity import RetryCallState

from rxwatch.core.errors import UpstreamError
from rxwatch.core.logging import get_logger

log = get_logger("ingestion.retry")


def backoff_delay(
    attempt: int,
    *,
    base: float,
    cap: float,
    jitter: float,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay after failed attempt ``attempt``: base * 2**attempt plus up to ``jitter``, capped.

    ``attempt`` is tenacity's 1-based ``attempt_number``, so the first backoff
    is ``base * 2``, not ``base``.
    """
    return min(cap, base * (2**attempt) + rng() * jitter)


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamError) and exc.retryable


def exponential_wait(base: float, cap: float, jitter: float) -> Callable[[RetryCallState], float]:
    """Tenacity ``wait`` callback built on :func:`backoff_delay`."""

    def wait(retry_state: RetryCallState) -> float:
        return backoff_delay(retry_state.attempt_number, base=base, cap=cap, jitter=jitter)

    return wait


def log_before_sleep(source: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        log.warning(f"{source}: attempt {retry_state.attempt_number} failed ({exc}); retrying in {delay:.1f}s")

    return before_sleep
