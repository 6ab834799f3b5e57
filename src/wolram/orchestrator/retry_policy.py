"""Exponential backoff policy for PROCESS-stage retries."""

from __future__ import annotations


def delay_for_attempt(attempt: int, base_delay_ms: int, max_delay_ms: int | None = None) -> int:
    """Backoff in milliseconds: ``base_delay_ms * 2 ** (attempt - 1)``.

    Attempts are numbered from 1; attempt 0 is treated as attempt 1. When
    ``max_delay_ms`` is given the delay is clamped to it, which keeps the
    function monotonic in ``attempt``.
    """

    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    if base_delay_ms < 0:
        raise ValueError(f"base_delay_ms must be >= 0, got {base_delay_ms}")
    exponent = max(attempt - 1, 0)
    if max_delay_ms is None:
        return base_delay_ms * (2**exponent)
    if base_delay_ms == 0:
        return 0
    # Avoid building huge integers for very large attempt numbers.
    if exponent >= max_delay_ms.bit_length() + 1:
        return max_delay_ms
    return min(base_delay_ms * (2**exponent), max_delay_ms)


def should_retry(retry_count: int, max_retries: int) -> bool:
    """Whether one more retry fits in the budget. ``max_retries=0`` never retries."""

    return retry_count < max_retries


def retry_delay_ms(
    *,
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int | None,
    retry_after_ms: int | None = None,
    honor_retry_after: bool = True,
) -> int:
    """Delay before the next attempt, taking a rate-limit hint into account.

    A server hint can lengthen the computed backoff but never shorten it. The
    result is clamped to ``max_delay_ms`` either way.
    """

    delay = delay_for_attempt(attempt, base_delay_ms, max_delay_ms)
    if honor_retry_after and retry_after_ms is not None and retry_after_ms > delay:
        delay = retry_after_ms
        if max_delay_ms is not None:
            delay = min(delay, max_delay_ms)
    return delay
