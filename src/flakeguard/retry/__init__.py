"""Retry policy for flaky-aware test steps."""

from flakeguard.retry.policy import (
    DEFAULT_MAX_ATTEMPTS,
    RetryAction,
    RetryDecision,
    RetryPolicy,
    decide_retry,
)

__all__ = [
    "DEFAULT_MAX_ATTEMPTS",
    "RetryAction",
    "RetryDecision",
    "RetryPolicy",
    "decide_retry",
]
