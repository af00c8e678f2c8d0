"""Retry decisions for test steps based on failure classification."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from flakeguard.classify.classifier import ClassificationResult
from flakeguard.registry.models import TestIdentifier

RetryAction = Literal["RETRY", "ACCEPT", "FAIL"]

DEFAULT_MAX_ATTEMPTS = 2


@dataclass(frozen=True, slots=True)
class RetryDecision:
    """Outcome of one retry evaluation.

    `scope` is only non-empty for RETRY and names the tests to re-run.
    `mark_unstable` is set when flaky failures survived every allowed attempt.
    """

    action: RetryAction
    reason: str
    scope: frozenset[TestIdentifier] = frozenset()
    mark_unstable: bool = False
    module_id: str | None = None

    @property
    def is_retry(self) -> bool:
        return self.action == "RETRY"


def decide_retry(
    classification: ClassificationResult,
    attempt_number: int,
    max_attempts: int,
    module_id: str | None = None,
) -> RetryDecision:
    """Decide whether a test step should be re-run.

    Rules are evaluated in order:

    1. any genuine failure fails the step, whatever the attempt count;
    2. no failures at all accepts the step;
    3. only known-flaky failures with attempts left retries just those tests;
    4. only known-flaky failures with attempts exhausted accepts the step but
       marks it unstable.
    """

    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
    if attempt_number < 1:
        raise ValueError(f"attempt_number must be >= 1, got {attempt_number}")

    if classification.genuine:
        return RetryDecision(
            action="FAIL",
            reason=f"genuine_failures={len(classification.genuine)}",
            module_id=module_id,
        )
    if not classification.known:
        return RetryDecision(action="ACCEPT", reason="no_failures", module_id=module_id)
    if attempt_number < max_attempts:
        return RetryDecision(
            action="RETRY",
            reason=f"known_flaky={len(classification.known)} attempt={attempt_number}/{max_attempts}",
            scope=classification.known,
            module_id=module_id,
        )
    return RetryDecision(
        action="ACCEPT",
        reason=f"retries_exhausted known_flaky={len(classification.known)}",
        mark_unstable=True,
        module_id=module_id,
    )


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry policy bound to a configured attempt limit."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    def decide(
        self,
        classification: ClassificationResult,
        attempt_number: int,
        module_id: str | None = None,
    ) -> RetryDecision:
        return decide_retry(classification, attempt_number, self.max_attempts, module_id=module_id)
