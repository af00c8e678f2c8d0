from __future__ import annotations

import pytest

from flakeguard.classify import ClassificationResult
from flakeguard.retry import RetryPolicy, decide_retry

KNOWN_ONLY = ClassificationResult(known=frozenset({"ModA::testFoo"}))
GENUINE_ONLY = ClassificationResult(genuine=frozenset({"ModC::testNew"}))
MIXED = ClassificationResult(known=frozenset({"ModA::testFoo"}), genuine=frozenset({"ModC::testNew"}))


@pytest.mark.parametrize("classification", [GENUINE_ONLY, MIXED])
@pytest.mark.parametrize(("attempt", "max_attempts"), [(1, 1), (1, 2), (2, 2), (1, 5), (4, 5)])
def test_genuine_failures_always_fail(classification: ClassificationResult, attempt: int, max_attempts: int) -> None:
    decision = decide_retry(classification, attempt, max_attempts)

    assert decision.action == "FAIL"
    assert decision.scope == frozenset()
    assert not decision.mark_unstable


def test_no_failures_accepts_cleanly() -> None:
    decision = RetryPolicy(max_attempts=2).decide(ClassificationResult(), 1)

    assert decision.action == "ACCEPT"
    assert not decision.mark_unstable


def test_known_only_with_attempts_left_retries_known_scope() -> None:
    decision = RetryPolicy(max_attempts=3).decide(KNOWN_ONLY, 2, module_id="ModA")

    assert decision.is_retry
    assert decision.scope == frozenset({"ModA::testFoo"})
    assert decision.module_id == "ModA"


def test_known_only_at_limit_accepts_but_marks_unstable() -> None:
    decision = RetryPolicy(max_attempts=2).decide(KNOWN_ONLY, 2)

    assert decision.action == "ACCEPT"
    assert decision.mark_unstable


def test_single_attempt_budget_never_retries() -> None:
    decision = decide_retry(KNOWN_ONLY, 1, 1)

    assert decision.action == "ACCEPT"
    assert decision.mark_unstable


def test_invalid_limits_are_rejected() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        decide_retry(KNOWN_ONLY, 0, 2)
