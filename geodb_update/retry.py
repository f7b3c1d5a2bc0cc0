"""
Retry Budget

Backoff decisions for a single edition's update attempts. The budget is
measured from the first attempt for the edition, not per attempt.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Union

DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 60.0


@dataclass(frozen=True)
class RetryDecision:
    """Either retry after `delay` seconds or abandon the edition."""
    retry: bool
    delay: float = 0.0


ABANDON = RetryDecision(retry=False)


def _seconds(value: Union[float, int, timedelta]) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def next_retry(attempt: int, elapsed: Union[float, timedelta], budget: Union[float, timedelta],
               base_delay: float = DEFAULT_BASE_DELAY,
               max_delay: float = DEFAULT_MAX_DELAY) -> RetryDecision:
    """
    Decide what to do after a failed attempt.

    Args:
        attempt: Number of attempts made so far (1 after the first failure)
        elapsed: Time since the first attempt started
        budget: Total time allowed for all attempts of this edition
        base_delay: Delay after the first failure, doubled on each further one
        max_delay: Upper bound for a single delay

    Returns:
        RetryDecision: retry after a delay, or abandon once the budget is spent
    """
    if attempt < 1:
        raise ValueError(f"attempt must be at least 1, got {attempt}")

    remaining = _seconds(budget) - _seconds(elapsed)
    if remaining <= 0:
        return ABANDON

    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)

    # Never sleep past the end of the budget
    return RetryDecision(retry=True, delay=min(delay, remaining))
