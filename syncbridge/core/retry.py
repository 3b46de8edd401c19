"""Retry decision for failed queue attempts.

Retries are paced by the worker's fixed poll interval only; there is no
backoff schedule.
"""

from enum import Enum


class RetryDecision(str, Enum):
    RETRY = "retry"
    EXHAUST = "exhaust"


def decide(retry_count: int, max_retries: int) -> RetryDecision:
    """Decide what happens to an item whose attempt number ``retry_count + 1`` failed."""
    if retry_count + 1 >= max_retries:
        return RetryDecision.EXHAUST
    return RetryDecision.RETRY
