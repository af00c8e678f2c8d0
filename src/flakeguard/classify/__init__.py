"""Failure classification against the known-flaky registry."""

from flakeguard.classify.classifier import ClassificationResult, FailureSet, classify, to_failure_set

__all__ = ["ClassificationResult", "FailureSet", "classify", "to_failure_set"]
